"""
app/job/services.py

Job Service Layer
Drives the job lifecycle: posting, bidding, acceptance (which opens escrow),
work execution, approval (which releases escrow), disputes and listings.
Money movement is delegated to PaymentService; every job write goes through
the version-checked commit in `app.job.store`.
"""

import logging
import time
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import DuplicateProposal, InvalidTransitionError
from app.database.enums import JobStatus, PaymentStatus, ProposalStatus, UserRole
from app.database.models import User
from app.job import schemas
from app.job.models import Job, JobProposal
from app.job.store import commit_job, get_job_or_404
from app.notification import services as events
from app.notification.services import NotificationService
from app.payment.gateway import PaymentGateway
from app.payment.services import PaymentService
from app.users.services import UserDirectory

logger = logging.getLogger(__name__)

OPEN_JOB_STATES = (JobStatus.POSTED, JobStatus.APPLIED)


class JobService:
    """Service class for job lifecycle business logic."""

    def __init__(
        self, db: AsyncSession, gateway: PaymentGateway, notifier: NotificationService
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.users = UserDirectory(db)
        self.payments = PaymentService(db, gateway, notifier)

    # ---------------------------------------------------
    # Posting
    # ---------------------------------------------------
    async def create_job(self, customer_id: UUID, payload: schemas.JobCreate) -> Job:
        """Customer posts a new job open for proposals."""
        data = payload.model_dump()
        job = Job.post(
            customer_id,
            platform_fee_percentage=settings.PLATFORM_FEE_PERCENTAGE,
            currency=settings.PAYMENT_CURRENCY,
            **data,
        )
        self.db.add(job)
        await self.db.commit()
        logger.info(f"[JOB] Job created: job_id={job.id} by customer {customer_id}")
        return job

    async def update_job(self, actor: User, job_id: UUID, payload: schemas.JobUpdate) -> Job:
        job = await get_job_or_404(self.db, job_id)
        job.ensure_owner(actor.id)
        job.update_details(payload.model_dump(exclude_unset=True))
        await commit_job(self.db, job_id)
        logger.info(f"[JOB] Job {job_id} updated by owner {actor.id}")
        return job

    async def delete_job(self, actor: User, job_id: UUID) -> str:
        """
        Remove a posted job outright; anything further along is cancelled instead
        so bids and payment history survive.
        """
        job = await get_job_or_404(self.db, job_id)
        if actor.role != UserRole.ADMIN:
            job.ensure_owner(actor.id)

        if job.status == JobStatus.POSTED:
            await self.db.delete(job)
            await commit_job(self.db, job_id)
            logger.info(f"[JOB] Job {job_id} deleted by {actor.id}")
            return "Job deleted successfully"

        await self.payments.cancel_and_refund(actor, job_id, "Job deleted by owner")
        return "Job cancelled successfully"

    # ---------------------------------------------------
    # Retrieval
    # ---------------------------------------------------
    async def get_job_detail(self, job_id: UUID) -> Job:
        return await get_job_or_404(self.db, job_id)

    async def list_open_jobs(
        self, filters: schemas.JobFilters, skip: int = 0, limit: int = 20
    ) -> tuple[list[Job], int]:
        """Public listing; defaults to jobs still accepting proposals."""
        stmt = select(Job)
        if filters.status:
            stmt = stmt.where(Job.status == filters.status)
        else:
            stmt = stmt.where(Job.status.in_(OPEN_JOB_STATES))
        if filters.category:
            stmt = stmt.where(Job.category == filters.category)
        if filters.urgency:
            stmt = stmt.where(Job.urgency == filters.urgency)
        if filters.city:
            stmt = stmt.where(Job.city.ilike(f"%{filters.city}%"))
        if filters.county:
            stmt = stmt.where(Job.county.ilike(f"%{filters.county}%"))
        return await self._page(stmt, skip, limit)

    async def list_jobs_for_user(
        self, user: User, filters: schemas.MyJobFilters, skip: int = 0, limit: int = 20
    ) -> tuple[list[Job], int]:
        """Jobs the user posted, is assigned to, or (as fundi) has bid on."""
        bid_on = select(JobProposal.job_id).where(JobProposal.fundi_id == user.id)
        if filters.role == "customer":
            stmt = select(Job).where(Job.customer_id == user.id)
        elif filters.role == "fundi":
            stmt = select(Job).where(or_(Job.fundi_id == user.id, Job.id.in_(bid_on)))
        else:
            stmt = select(Job).where(
                or_(Job.customer_id == user.id, Job.fundi_id == user.id, Job.id.in_(bid_on))
            )
        if filters.status:
            stmt = stmt.where(Job.status == filters.status)
        return await self._page(stmt, skip, limit)

    async def _page(self, stmt, skip: int, limit: int) -> tuple[list[Job], int]:
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar_one()
        rows = await self.db.execute(stmt.order_by(Job.created_at.desc()).offset(skip).limit(limit))
        return list(rows.scalars().all()), total

    async def list_fundi_proposals(
        self, fundi_id: UUID, skip: int = 0, limit: int = 20
    ) -> tuple[list[schemas.FundiProposalRead], int]:
        base = (
            select(JobProposal, Job.title, Job.status)
            .join(Job, Job.id == JobProposal.job_id)
            .where(JobProposal.fundi_id == fundi_id)
        )
        count_stmt = select(func.count()).select_from(
            select(JobProposal.id).where(JobProposal.fundi_id == fundi_id).subquery()
        )
        total = (await self.db.execute(count_stmt)).scalar_one()
        rows = await self.db.execute(
            base.order_by(JobProposal.applied_at.desc()).offset(skip).limit(limit)
        )
        items = [
            schemas.FundiProposalRead(
                id=proposal.id,
                fundi_id=proposal.fundi_id,
                proposed_price=proposal.proposed_price,
                estimated_duration=proposal.estimated_duration,
                proposal=proposal.proposal,
                status=proposal.status,
                applied_at=proposal.applied_at,
                job_id=proposal.job_id,
                job_title=title,
                job_status=job_status,
            )
            for proposal, title, job_status in rows.all()
        ]
        return items, total

    async def proposal_stats(self, fundi_id: UUID) -> schemas.ProposalStats:
        rows = await self.db.execute(
            select(JobProposal.status, func.count())
            .where(JobProposal.fundi_id == fundi_id)
            .group_by(JobProposal.status)
        )
        counts = {status: count for status, count in rows.all()}
        return schemas.ProposalStats(
            total=sum(counts.values()),
            pending=counts.get(ProposalStatus.PENDING, 0),
            accepted=counts.get(ProposalStatus.ACCEPTED, 0),
            rejected=counts.get(ProposalStatus.REJECTED, 0),
        )

    # ---------------------------------------------------
    # Bidding
    # ---------------------------------------------------
    async def submit_proposal(
        self, fundi: User, job_id: UUID, payload: schemas.ProposalCreate
    ) -> JobProposal:
        job = await get_job_or_404(self.db, job_id)
        proposal = job.add_proposal(
            fundi.id, payload.proposed_price, payload.estimated_duration, payload.proposal
        )
        try:
            await commit_job(self.db, job_id)
        except IntegrityError as e:
            await self.db.rollback()
            logger.info(f"[JOB] Duplicate proposal by fundi {fundi.id} on job {job_id}")
            raise DuplicateProposal("You have already submitted a proposal for this job") from e

        logger.info(f"[JOB] Proposal {proposal.id} submitted on job {job_id} by fundi {fundi.id}")
        await self.notifier.notify(
            job.customer_id,
            events.PROPOSAL_SUBMITTED,
            {"job_id": str(job_id), "fundi_id": str(fundi.id), "price": payload.proposed_price},
        )
        return proposal

    async def accept_proposal(self, actor: User, job_id: UUID, fundi_id: UUID) -> Job:
        """
        Owner accepts one fundi's proposal.

        Cash jobs go straight to assigned. Other jobs are committed as
        pending_payment_escrow before the charge is opened; if opening the
        charge fails the job keeps that state and the owner re-initiates it.
        """
        job = await get_job_or_404(self.db, job_id)
        job.ensure_owner(actor.id)
        chosen = job.accept_proposal(fundi_id)
        rejected = [p.fundi_id for p in job.proposals if p.status == ProposalStatus.REJECTED]
        await commit_job(self.db, job_id)
        logger.info(f"[JOB] Proposal from fundi {fundi_id} accepted on job {job_id} ({job.status.value})")

        await self.notifier.notify(
            fundi_id,
            events.PROPOSAL_ACCEPTED,
            {"job_id": str(job_id), "agreed_price": chosen.proposed_price},
        )
        for other in rejected:
            await self.notifier.notify(other, events.PROPOSAL_REJECTED, {"job_id": str(job_id)})

        if job.is_cash:
            return job
        return await self.payments.initiate_escrow(job)

    # ---------------------------------------------------
    # Work Execution
    # ---------------------------------------------------
    async def start_job(self, fundi: User, job_id: UUID) -> Job:
        job = await get_job_or_404(self.db, job_id)
        job.start_work(fundi.id)
        await commit_job(self.db, job_id)
        logger.info(f"[JOB] Job {job_id} started by fundi {fundi.id}")
        await self.notifier.notify(job.customer_id, events.JOB_STARTED, {"job_id": str(job_id)})
        return job

    async def add_progress(self, actor: User, job_id: UUID, payload: schemas.ProgressCreate) -> Job:
        job = await get_job_or_404(self.db, job_id)
        job.append_progress(actor.id, payload.message, payload.images, payload.stage)
        await commit_job(self.db, job_id)
        other = job.fundi_id if actor.id == job.customer_id else job.customer_id
        await self.notifier.notify(
            other, events.JOB_PROGRESS, {"job_id": str(job_id), "message": payload.message}
        )
        return job

    async def complete_job(self, fundi: User, job_id: UUID, payload: schemas.JobComplete) -> Job:
        job = await get_job_or_404(self.db, job_id)
        job.complete_work(
            fundi.id, payload.completion_images, payload.completion_notes, payload.actual_price
        )
        await commit_job(self.db, job_id)
        logger.info(f"[JOB] Job {job_id} completed by fundi {fundi.id} (actual={job.actual_price})")
        await self.notifier.notify(job.customer_id, events.JOB_COMPLETED, {"job_id": str(job_id)})
        return job

    # ---------------------------------------------------
    # Approval & Release
    # ---------------------------------------------------
    async def approve_completion(self, actor: User, job_id: UUID) -> Job:
        """
        Owner approves completed work and the escrow is released to the fundi.

        Approval, the payout claim and the fundi's completed-jobs bump commit
        together; only the request that wins that commit calls the provider.
        """
        job = await get_job_or_404(self.db, job_id)
        job.approve_completion(actor.id)
        fundi_id = job.fundi_id

        if job.is_cash:
            job.mark_cash_released()
            await self.users.increment_completed_jobs(fundi_id)
            await commit_job(self.db, job_id)
            logger.info(f"[JOB] Cash job {job_id} approved and settled")
            await self.notifier.notify(fundi_id, events.JOB_APPROVED, {"job_id": str(job_id)})
            return job

        if job.payment_status != PaymentStatus.ESCROW:
            raise InvalidTransitionError(
                f"Cannot approve: payment is {job.payment_status.value}, not held in escrow"
            )
        job.claim_payout(f"REL_{job_id.hex}_{int(time.time() * 1000)}")
        await self.users.increment_completed_jobs(fundi_id)
        await commit_job(self.db, job_id)
        logger.info(f"[JOB] Job {job_id} approved; payout claimed as {job.release_reference}")
        await self.notifier.notify(fundi_id, events.JOB_APPROVED, {"job_id": str(job_id)})

        return await self.payments.release_funds(job)

    # ---------------------------------------------------
    # Dispute & Cancellation
    # ---------------------------------------------------
    async def raise_dispute(self, actor: User, job_id: UUID, reason: str) -> Job:
        job = await get_job_or_404(self.db, job_id)
        job.raise_dispute(actor.id, reason)
        await commit_job(self.db, job_id)
        logger.warning(f"[JOB] Job {job_id} disputed by {actor.id}: {reason}")
        other = job.fundi_id if actor.id == job.customer_id else job.customer_id
        await self.notifier.notify(other, events.JOB_DISPUTED, {"job_id": str(job_id), "reason": reason})
        return job

    async def cancel_job(self, actor: User, job_id: UUID, reason: str | None) -> Job:
        return await self.payments.cancel_and_refund(actor, job_id, reason)
