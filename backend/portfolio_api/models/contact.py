"""
Portfolio API — ContactMessage SQLAlchemy Model
================================================

What:  ORM model for the `contact_messages` table.
Who:   Written by ContactService.create_message, read by the admin listing,
       detail and statistics endpoints.

Indexes:
    idx_contact_messages_created_at: newest-first listing and date-range stats
    idx_contact_messages_email:      per-sender lookups
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_api.database import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContactMessage(Base):
    """A message submitted through the portfolio contact form."""

    __tablename__ = "contact_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(500), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    # 45 chars fits the longest textual IPv6 form
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    __table_args__ = (
        Index("idx_contact_messages_created_at", "created_at"),
        Index("idx_contact_messages_email", "email"),
    )

    def __repr__(self) -> str:
        return f"<ContactMessage id={self.id} email={self.email!r}>"
