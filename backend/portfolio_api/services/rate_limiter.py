"""
Portfolio API — Sliding Window Rate Limiter
============================================

What:  Per-client request accounting in two categories: `general` (every
       request) and `contact` (the contact-form namespace).
How:   Request timestamps are kept in a JSON document keyed by
       "{client_ip}_{category}". Each check loads the document, counts the
       timestamps inside the trailing window, and, when the request is
       allowed, appends "now" and prunes expired entries before persisting.
Who:   Called by RateLimitMiddleware for every rate-limited request.

Algorithm: Sliding Window Log
    1. now = clock()
    2. general: count ts with now - ts < general_window
       → count >= general_limit: reject, Retry-After = general_window
    3. contact namespace only: same check against the contact rule
       → reject, Retry-After = contact_window
    4. allowed: record now under general, and under contact for POSTs to the
       contact namespace; prune on write

Concurrency:
    The whole load → prune → check → append → persist cycle runs under one
    asyncio.Lock owned by the store, so concurrent requests in this process
    cannot lose updates.

Scaling boundary:
    The file store is correct for a single process only. Multi-process or
    multi-host deployments need an external store with atomic
    increment-and-expire (e.g. Redis) behind the same RateLimitStore API.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Union

import aiofiles
import aiofiles.os

from portfolio_api.config import Settings
from portfolio_api.core.paths import normalize_path
from portfolio_api.exceptions import RateLimitStoreError

logger = logging.getLogger(__name__)

GENERAL = "general"
CONTACT = "contact"


def rate_limit_key(client_ip: str, category: str) -> str:
    return f"{client_ip}_{category}"


# ══════════════════════════════════════════════════════════════════════════
# Store
# ══════════════════════════════════════════════════════════════════════════

class RateLimitDocument:
    """In-memory copy of the store taken inside a transaction."""

    def __init__(self, entries: Dict[str, List[float]]):
        self.entries = entries
        self.modified = False

    def timestamps(self, key: str) -> List[float]:
        return self.entries.get(key, [])

    def replace(self, key: str, timestamps: List[float]) -> None:
        if timestamps:
            self.entries[key] = timestamps
        else:
            self.entries.pop(key, None)
        self.modified = True


class RateLimitStore:
    """
    Durable JSON document mapping rate-limit keys to request timestamps.

    Writes go to a temporary file that then replaces the document, so a
    crash mid-write never leaves a truncated store behind. A missing or
    unreadable document reads as empty.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[RateLimitDocument]:
        """
        Exclusive read-modify-write section.

        The document is persisted on exit only if it was modified and the
        block did not raise.
        """
        async with self._lock:
            document = RateLimitDocument(await self._load())
            yield document
            if document.modified:
                await self._save(document.entries)

    async def snapshot(self) -> Dict[str, List[float]]:
        """Current contents (read under the lock)."""
        async with self._lock:
            return await self._load()

    async def _load(self) -> Dict[str, List[float]]:
        if not self.path.exists():
            return {}

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            logger.warning("Could not read rate limit store %s: %s", self.path, e)
            return {}

        if not content.strip():
            return {}

        try:
            raw = json.loads(content)
        except ValueError:
            logger.warning("Rate limit store %s is not valid JSON; starting empty", self.path)
            return {}

        if not isinstance(raw, dict):
            return {}

        entries: Dict[str, List[float]] = {}
        for key, stamps in raw.items():
            if isinstance(stamps, list):
                entries[str(key)] = [
                    float(ts) for ts in stamps if isinstance(ts, (int, float))
                ]
        return entries

    async def _save(self, entries: Dict[str, List[float]]) -> None:
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(entries, indent=2, sort_keys=True))
            await aiofiles.os.replace(temp_path, self.path)
        except OSError as e:
            logger.error("Failed to write rate limit store %s: %s", self.path, e)
            raise RateLimitStoreError(
                message="Rate limit state could not be saved",
                context={"path": str(self.path), "os_error": str(e)},
            )


# ══════════════════════════════════════════════════════════════════════════
# Limiter
# ══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RateLimitRule:
    category: str
    limit: int
    window: int  # seconds


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    category: Optional[str] = None
    count: int = 0
    limit: int = 0
    retry_after: int = 0

    @classmethod
    def allow(cls) -> "RateLimitDecision":
        return cls(allowed=True)


class RateLimiter:
    """
    Two-rule sliding window limiter.

    Args:
        store:          Shared RateLimitStore
        general:        Rule applied to every request
        contact:        Rule applied inside `contact_prefix`
        contact_prefix: Path namespace of the contact form
        clock:          Returns epoch seconds (injectable for tests)
    """

    def __init__(
        self,
        store: RateLimitStore,
        general: RateLimitRule,
        contact: RateLimitRule,
        contact_prefix: str = "/api/contact",
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.general = general
        self.contact = contact
        self.contact_prefix = normalize_path(contact_prefix)
        self._clock = clock
        self._rules = {GENERAL: general, CONTACT: contact}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RateLimitStore,
        clock: Callable[[], float] = time.time,
    ) -> "RateLimiter":
        return cls(
            store=store,
            general=RateLimitRule(GENERAL, settings.rate_limit_requests, settings.rate_limit_window),
            contact=RateLimitRule(CONTACT, settings.contact_rate_limit, settings.contact_rate_window),
            contact_prefix=settings.contact_path_prefix,
            clock=clock,
        )

    def is_contact_path(self, path: str) -> bool:
        path = normalize_path(path)
        return path == self.contact_prefix or path.startswith(self.contact_prefix + "/")

    async def check(self, client_ip: str, path: str, method: str) -> RateLimitDecision:
        """Check both rules and, when allowed, record the request."""
        now = self._clock()
        in_contact = self.is_contact_path(path)

        async with self.store.transaction() as document:
            rules = [self.general, self.contact] if in_contact else [self.general]
            for rule in rules:
                key = rate_limit_key(client_ip, rule.category)
                count = self._count(document.timestamps(key), now, rule.window)
                if count >= rule.limit:
                    logger.warning(
                        "Rate limit exceeded for %s: %d requests in %ds window",
                        key, count, rule.window,
                    )
                    return RateLimitDecision(
                        allowed=False,
                        category=rule.category,
                        count=count,
                        limit=rule.limit,
                        retry_after=rule.window,
                    )

            self._record(document, rate_limit_key(client_ip, GENERAL), now, self.general.window)
            if in_contact and method.upper() == "POST":
                self._record(document, rate_limit_key(client_ip, CONTACT), now, self.contact.window)
            self._sweep(document, now)

        return RateLimitDecision.allow()

    async def count(self, client_ip: str, category: str = GENERAL) -> int:
        """Requests currently inside the window for a client and category."""
        rule = self._rules[category]
        entries = await self.store.snapshot()
        return self._count(entries.get(rate_limit_key(client_ip, category), []), self._clock(), rule.window)

    @staticmethod
    def _count(timestamps: List[float], now: float, window: int) -> int:
        return sum(1 for ts in timestamps if now - ts < window)

    @staticmethod
    def _record(document: RateLimitDocument, key: str, now: float, window: int) -> None:
        stamps = [ts for ts in document.timestamps(key) if now - ts < window]
        stamps.append(now)
        document.replace(key, stamps)

    def _sweep(self, document: RateLimitDocument, now: float) -> None:
        """Prune expired timestamps of every key; drop keys left empty."""
        for key in list(document.entries):
            category = key.rsplit("_", 1)[-1]
            window = self._rules.get(category, self.general).window
            stamps = document.entries[key]
            kept = [ts for ts in stamps if now - ts < window]
            if len(kept) != len(stamps):
                document.replace(key, kept)
