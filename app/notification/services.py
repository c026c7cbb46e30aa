"""
app/notification/services.py

Notification Service

Fire-and-forget delivery of job and payment events to a user's inbox.
Each notification is written in its own session so a failure here can never
roll back, or fail, the operation that triggered it.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.notification.models import Notification

logger = logging.getLogger(__name__)

# ---------------------------------------------------
# Event Types
# ---------------------------------------------------
PROPOSAL_SUBMITTED = "proposal_submitted"
PROPOSAL_ACCEPTED = "proposal_accepted"
PROPOSAL_REJECTED = "proposal_rejected"
ESCROW_FUNDED = "escrow_funded"
JOB_STARTED = "job_started"
JOB_PROGRESS = "job_progress"
JOB_COMPLETED = "job_completed"
JOB_APPROVED = "job_approved"
PAYMENT_RELEASED = "payment_released"
PAYOUT_FAILED = "payout_failed"
JOB_CANCELLED = "job_cancelled"
PAYMENT_REFUNDED = "payment_refunded"
JOB_DISPUTED = "job_disputed"


class NotificationService:
    """Writes notifications with an independent session per event."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def notify(self, user_id: UUID | None, event_type: str, payload: dict[str, Any]) -> None:
        if user_id is None:
            return
        try:
            async with self._session_factory() as session:
                session.add(Notification(user_id=user_id, event_type=event_type, payload=payload))
                await session.commit()
            logger.debug(f"[NOTIFY] {event_type} -> user {user_id}")
        except Exception as e:
            logger.error(f"[NOTIFY] Failed to deliver {event_type} to user {user_id}: {e}")
