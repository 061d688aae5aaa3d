"""
Portfolio API — Contact Request/Response Schemas
=================================================

What:  Validation of contact-form submissions and the shapes returned by the
       contact endpoints.
How:   `validate_contact_data()` reports every problem with a submission as a
       list of human-readable messages (the form shows them all at once);
       a clean submission is then normalized into `ContactSubmission`.
       Response models are Pydantic models built from ORM rows.
Who:   ContactController (input), ContactService (output).

Rules:
    name, email, subject, message   required, must be strings
    email                           syntactically valid address, ≤ 255
    name ≤ 255 · subject ≤ 500 · message ≤ 5000
    name ≥ 2 · subject ≥ 3 · message ≥ 10 (after trimming)
"""

import re
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

REQUIRED_FIELDS = ("name", "email", "subject", "message")

# local@domain.tld, no whitespace, one @, dotted domain
EMAIL_PATTERN = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)

MAX_LENGTHS = (
    ("name", 255, "Name must be less than 255 characters"),
    ("email", 255, "Email must be less than 255 characters"),
    ("subject", 500, "Subject must be less than 500 characters"),
    ("message", 5000, "Message must be less than 5000 characters"),
)

MIN_LENGTHS = (
    ("name", 2, "Name must be at least 2 characters long"),
    ("subject", 3, "Subject must be at least 3 characters long"),
    ("message", 10, "Message must be at least 10 characters long"),
)


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value)) and ".." not in value


def validate_contact_data(data: Any) -> List[str]:
    """
    Return every validation problem of a raw submission (empty when valid).

    Missing or non-string required fields are reported first; the remaining
    checks only run when all required fields are present.
    """
    if not isinstance(data, Mapping):
        data = {}

    errors = [
        f"Field '{field}' is required and must be a string"
        for field in REQUIRED_FIELDS
        if not isinstance(data.get(field), str) or not data.get(field)
    ]
    if errors:
        return errors

    if not is_valid_email(data["email"].strip()):
        errors.append("Invalid email format")

    for field, limit, message in MAX_LENGTHS:
        if len(data[field]) > limit:
            errors.append(message)

    for field, minimum, message in MIN_LENGTHS:
        if len(data[field].strip()) < minimum:
            errors.append(message)

    return errors


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class ContactSubmission(BaseModel):
    """A validated, normalized submission ready to be stored."""

    name: str
    email: str
    subject: str
    message: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = Field(default=None, max_length=500)

    @field_validator("name", "subject", "message")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("user_agent", mode="before")
    @classmethod
    def truncate_user_agent(cls, v: Optional[str]) -> Optional[str]:
        # Column is 500 chars; browsers occasionally send more
        return v[:500] if isinstance(v, str) else v


class PaginationParams(BaseModel):
    """
    Page-number pagination for the admin listing.

    Out-of-range or non-numeric values are clamped rather than rejected:
    page < 1 → 1, limit outside 1..100 → nearest bound, garbage → default.
    """

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> "PaginationParams":
        page = _to_int(query.get("page"), 1)
        limit = _to_int(query.get("limit"), 20)
        return cls(page=max(1, page), limit=min(100, max(1, limit)))


def _to_int(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; stored values are always UTC
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class ContactMessageResponse(BaseModel):
    id: int
    name: str
    email: str
    subject: str
    message: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class RecentMessage(BaseModel):
    name: str
    email: str
    subject: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("created_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class DomainCount(BaseModel):
    domain: str
    count: int


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool


class ContactStats(BaseModel):
    total_messages: int
    messages_today: int
    messages_this_week: int
    messages_this_month: int
    top_domains: List[DomainCount]
    recent_messages: List[RecentMessage]
