"""
Portfolio API — Application Configuration
==========================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads environment variables (or a .env file),
       validates types/ranges, and exposes derived helpers such as the
       normalized CORS allow-list.
Who:   Loaded once by `create_app()` and passed explicitly into the router,
       middleware, rate limiter and services.
When:  Once per process, before the middleware chain is constructed. The
       object is treated as immutable afterwards.
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

# Origins always accepted when APP_ENV=development (local frontends).
DEVELOPMENT_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",
)

VALID_ENVIRONMENTS = {"development", "staging", "production"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development. Production
    deployments MUST set ALLOWED_ORIGINS and the e-mail provider credentials.

    Attributes are grouped by concern for readability.
    """

    # ── Application ───────────────────────────────────────────────────────
    app_name: str = Field(default="Portfolio API")

    # What: Deployment environment name
    # Affects: CORS leniency (dev origins, escape hatch) and error verbosity
    app_env: str = Field(default="production")

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Ensures APP_ENV is one of the known environment names."""
        lower = v.strip().lower()
        if lower not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"Invalid app_env '{v}'. Must be one of: {sorted(VALID_ENVIRONMENTS)}"
            )
        return lower

    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── CORS ──────────────────────────────────────────────────────────────
    # Format: Comma-separated origins (parsed by allowed_origins_list below)
    allowed_origins: str = Field(default="")

    # What: Lets requests from unlisted origins through (logged) outside
    # development instead of rejecting them with 403.
    # Default False: strict enforcement. Ignored when APP_ENV=development.
    cors_allow_unlisted_origins: bool = Field(default=False)

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        What: Splits ALLOWED_ORIGINS into a list of normalized origins.
        How:  Trims whitespace and trailing slashes, drops empty entries and,
              in development, appends the local frontend origins.
        """
        origins = [
            origin.strip().rstrip("/")
            for origin in self.allowed_origins.split(",")
            if origin.strip()
        ]
        if self.is_development:
            origins.extend(o for o in DEVELOPMENT_ORIGINS if o not in origins)
        return origins

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Per-IP sliding windows, one for all traffic and a stricter one
    # for the contact form namespace
    rate_limit_requests: int = Field(default=100, ge=1)
    rate_limit_window: int = Field(default=900, ge=1)  # seconds
    contact_rate_limit: int = Field(default=5, ge=1)
    contact_rate_window: int = Field(default=900, ge=1)  # seconds
    contact_path_prefix: str = Field(default="/api/contact")

    # What: JSON document holding the request timestamps per client key
    rate_limit_storage_path: str = Field(default="./storage/rate_limits.json")

    # ── Database ──────────────────────────────────────────────────────────
    # Format: SQLAlchemy async URL, e.g. postgresql+asyncpg://user:pw@host/db
    database_url: str = Field(
        default="sqlite+aiosqlite:///./storage/portfolio.db",
        description="Async SQLAlchemy connection URL",
    )
    # Pool sizing only applies to server databases (ignored for SQLite)
    db_pool_size: int = Field(default=5, ge=1, le=100)
    db_max_overflow: int = Field(default=10, ge=0, le=50)
    db_pool_pre_ping: bool = Field(default=True)

    # ── E-mail notifications ──────────────────────────────────────────────
    # Options: emailjs (HTTPS API) or smtp
    email_provider: str = Field(default="emailjs")

    emailjs_endpoint: str = Field(default="https://api.emailjs.com/api/v1.0/email/send")
    emailjs_service_id: str = Field(default="")
    emailjs_template_id: str = Field(default="")
    emailjs_public_key: str = Field(default="")
    emailjs_private_key: str = Field(default="")

    smtp_host: str = Field(default="")
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str = Field(default="")
    smtp_password: str = Field(default="")
    smtp_use_tls: bool = Field(default=True)

    contact_to_email: str = Field(default="")
    contact_from_email: str = Field(default="noreply@localhost")

    # What: Bounds for outbound e-mail calls (the core has no timeouts)
    email_timeout: float = Field(default=30.0, gt=0)
    email_connect_timeout: float = Field(default=10.0, gt=0)
    email_retry_attempts: int = Field(default=3, ge=1, le=10)

    @field_validator("email_provider")
    @classmethod
    def validate_email_provider(cls, v: str) -> str:
        lower = v.strip().lower()
        if lower not in {"emailjs", "smtp"}:
            raise ValueError(f"Unsupported email_provider '{v}'. Use 'emailjs' or 'smtp'.")
        return lower

    # ── Server ────────────────────────────────────────────────────────────
    storage_root: str = Field(default="./storage")
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1, le=65535)

    # ── Pydantic Settings Config ──────────────────────────────────────────
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,  # APP_ENV and app_env both work
        "extra": "ignore",
    }

    # ── Derived flags ─────────────────────────────────────────────────────
    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def expose_error_details(self) -> bool:
        """Stack traces and file/line info are only shown outside production."""
        return not self.is_production

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        How:   Collects every problem and raises one ValueError listing them.
        """
        errors = []
        if self.is_production and not self.allowed_origins_list:
            errors.append(
                "ALLOWED_ORIGINS is empty. Every browser request carrying an "
                "Origin header will be rejected."
            )
        if not self.contact_to_email and self.email_provider == "smtp":
            errors.append("CONTACT_TO_EMAIL is required for the smtp email provider.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )
