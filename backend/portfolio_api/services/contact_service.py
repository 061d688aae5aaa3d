"""
Portfolio API — Contact Message Service
========================================

What:  Persistence and queries for contact-form messages.
How:   Each public method opens one unit of work on the injected Database;
       SQLAlchemy failures are logged with their details and re-raised as
       DatabaseError, whose client-facing message stays generic.
Who:   ContactController.

Statistics periods (all UTC):
    today  created_at ≥ today 00:00
    week   created_at ≥ now - 7 days
    month  created_at ≥ now - 30 days
"""

import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError

from portfolio_api.database import Database
from portfolio_api.exceptions import DatabaseError
from portfolio_api.models.contact import ContactMessage
from portfolio_api.schemas.contact import (
    ContactMessageResponse,
    ContactStats,
    ContactSubmission,
    DomainCount,
    Pagination,
    PaginationParams,
    RecentMessage,
)

logger = logging.getLogger(__name__)

TOP_DOMAINS_LIMIT = 5
RECENT_MESSAGES_LIMIT = 5


class ContactService:
    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.database = database
        self._clock = clock

    async def create_message(self, submission: ContactSubmission) -> ContactMessage:
        """Store a validated submission; returns the row with its id."""
        try:
            async with self.database.session() as session:
                message = ContactMessage(
                    name=submission.name,
                    email=submission.email,
                    subject=submission.subject,
                    message=submission.message,
                    ip_address=submission.ip_address,
                    user_agent=submission.user_agent,
                    created_at=self._clock(),
                )
                session.add(message)
                await session.flush()  # assigns the id
        except SQLAlchemyError as e:
            logger.error("Failed to store contact message from %s: %s", submission.email, e)
            raise DatabaseError(context={"operation": "create_message", "db_error": str(e)})

        return message

    async def list_messages(
        self, params: PaginationParams
    ) -> Tuple[List[ContactMessageResponse], Pagination]:
        """Newest first, one page at a time."""
        try:
            async with self.database.session() as session:
                total = await session.scalar(select(func.count(ContactMessage.id))) or 0
                result = await session.execute(
                    select(ContactMessage)
                    .order_by(desc(ContactMessage.created_at), desc(ContactMessage.id))
                    .offset(params.offset)
                    .limit(params.limit)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to list contact messages: %s", e)
            raise DatabaseError(context={"operation": "list_messages", "db_error": str(e)})

        pages = math.ceil(total / params.limit)
        pagination = Pagination(
            page=params.page,
            limit=params.limit,
            total=total,
            pages=pages,
            has_next=params.page < pages,
            has_prev=params.page > 1,
        )
        return [ContactMessageResponse.model_validate(row) for row in rows], pagination

    async def get_message(self, message_id: int) -> Optional[ContactMessageResponse]:
        try:
            async with self.database.session() as session:
                row = await session.get(ContactMessage, message_id)
        except SQLAlchemyError as e:
            logger.error("Failed to load contact message %d: %s", message_id, e)
            raise DatabaseError(context={"operation": "get_message", "db_error": str(e)})

        return ContactMessageResponse.model_validate(row) if row is not None else None

    async def get_stats(self) -> ContactStats:
        now = self._clock()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        try:
            async with self.database.session() as session:
                total = await session.scalar(select(func.count(ContactMessage.id))) or 0
                today = await self._count_since(session, start_of_day)
                week = await self._count_since(session, now - timedelta(days=7))
                month = await self._count_since(session, now - timedelta(days=30))

                emails = (await session.execute(select(ContactMessage.email))).scalars().all()

                recent = (
                    await session.execute(
                        select(ContactMessage)
                        .order_by(desc(ContactMessage.created_at), desc(ContactMessage.id))
                        .limit(RECENT_MESSAGES_LIMIT)
                    )
                ).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Failed to compute contact statistics: %s", e)
            raise DatabaseError(context={"operation": "get_stats", "db_error": str(e)})

        return ContactStats(
            total_messages=total,
            messages_today=today,
            messages_this_week=week,
            messages_this_month=month,
            top_domains=top_email_domains(emails, TOP_DOMAINS_LIMIT),
            recent_messages=[RecentMessage.model_validate(row) for row in recent],
        )

    @staticmethod
    async def _count_since(session, since: datetime) -> int:
        count = await session.scalar(
            select(func.count(ContactMessage.id)).where(ContactMessage.created_at >= since)
        )
        return count or 0


def top_email_domains(emails: List[str], limit: int = TOP_DOMAINS_LIMIT) -> List[DomainCount]:
    """Most frequent sender domains, ties in first-seen order."""
    domains = Counter(
        email.rsplit("@", 1)[1].lower() for email in emails if email and "@" in email
    )
    return [DomainCount(domain=domain, count=count) for domain, count in domains.most_common(limit)]
