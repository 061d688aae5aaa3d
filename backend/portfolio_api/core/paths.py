"""Path normalization shared by route registration and request lookup."""


def normalize_path(path: str) -> str:
    """
    Normalize a request or route path.

    Strips surrounding whitespace and trailing slashes and guarantees exactly
    one leading slash; the root stays `/`.

        normalize_path("/api/contact/")  → "/api/contact"
        normalize_path("api/contact")    → "/api/contact"
        normalize_path("")               → "/"
    """
    return "/" + path.strip().strip("/")


def join_paths(prefix: str, path: str) -> str:
    """Compose a group prefix with a route path, then normalize the result."""
    return normalize_path(prefix.rstrip("/") + "/" + path.lstrip("/"))
