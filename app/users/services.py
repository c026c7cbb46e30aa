"""
app/users/services.py

User Directory

The job core's only window onto user accounts. It reads contact and payout
details, stores the payout recipient code a gateway resolved, and bumps the
completed-jobs counter inside the caller's transaction. Auth fields are never
touched here.
"""

import logging
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.database.models import User
from app.users.schemas import ContactInfo, PayoutProfile

logger = logging.getLogger(__name__)


class UserDirectory:
    """Read/write boundary between the job core and the user collaborator."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def _get_user_or_404(self, user_id: UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            logger.warning(f"[USERS] User not found: user_id={user_id}")
            raise NotFoundError("User not found")
        return user

    async def get_contact_info(self, user_id: UUID) -> ContactInfo:
        user = await self._get_user_or_404(user_id)
        return ContactInfo(
            user_id=user.id,
            email=user.email,
            phone_number=user.phone_number,
            full_name=user.full_name,
        )

    async def get_payout_profile(self, user_id: UUID) -> PayoutProfile:
        user = await self._get_user_or_404(user_id)
        return PayoutProfile(
            user_id=user.id,
            full_name=user.full_name,
            mpesa_number=user.mpesa_number or user.phone_number,
            payout_recipient_code=user.payout_recipient_code,
            completed_jobs=user.completed_jobs,
        )

    async def is_active_account(self, user_id: UUID) -> bool:
        user = await self.db.get(User, user_id)
        return bool(user and user.is_active)

    async def save_recipient_code(self, user_id: UUID, recipient_code: str) -> None:
        """Persist a resolved payout handle so later payouts skip resolution."""
        await self.db.execute(
            update(User).where(User.id == user_id).values(payout_recipient_code=recipient_code)
        )
        await self.db.commit()
        logger.info(f"[USERS] Saved payout recipient for user {user_id}")

    async def increment_completed_jobs(self, user_id: UUID) -> None:
        """
        Atomic `completed_jobs + 1` in the caller's open transaction.

        The caller commits, so the bump lands together with the job approval or not at all.
        """
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(completed_jobs=User.completed_jobs + 1)
            .execution_options(synchronize_session=False)
        )
