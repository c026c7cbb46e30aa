"""
app/payment/services.py

Payment Service Layer
Moves money for the job lifecycle through the PaymentGateway:
- Opening, re-opening and verifying escrow charges
- Releasing escrow to the assigned fundi (at most once per job)
- Administrative payout retry for approved jobs
- Cancelling jobs and refunding escrow
- The manual reconciliation queue

Ordering rule for every money movement: commit the intermediate job state,
call the provider with no transaction held on the job, then record the result
with `persist_with_retry`. A provider call is never repeated to get a write
through, and a timed-out call is treated as outcome unknown, not as failure.
"""

import logging
import time
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotAJobParticipant,
    ProviderError,
    ProviderRejected,
    ReconciliationRequired,
    ValidationError,
)
from app.database.enums import JobStatus, PaymentStatus, RefundStatus, TransferStatus, UserRole
from app.database.models import User
from app.job.models import Job
from app.job.store import commit_job, get_job_or_404, persist_with_retry
from app.notification import services as events
from app.notification.services import NotificationService
from app.payment.gateway import PaymentGateway, compute_fee_split
from app.payment.schemas import ChargeOutcome
from app.users.services import UserDirectory

logger = logging.getLogger(__name__)

SETTLED_PAYMENT_STATES = {PaymentStatus.ESCROW, PaymentStatus.RELEASED, PaymentStatus.REFUNDED}

# Outcomes of applying a confirmed charge to a job.
CHARGE_RECORDED = "recorded"
CHARGE_DUPLICATE = "duplicate"
CHARGE_FLAGGED = "flagged"


def _now_ms() -> int:
    return int(time.time() * 1000)


def flag_for_reconciliation(job: Job, note: str) -> str:
    job.flag_reconciliation(note)
    error = ReconciliationRequired(note, details={"job_id": str(job.id)})
    logger.error(f"[PAYMENT] {error.kind}: {error.message} (job {job.id})")
    return CHARGE_FLAGGED


def is_same_charge(job: Job, reference: str | None, transaction_id: str | None) -> bool:
    if reference:
        return reference == job.escrow_reference
    return transaction_id is None or transaction_id == job.escrow_transaction_id


def apply_charge_success(
    job: Job, reference: str | None, amount: int, transaction_id: str | None
) -> str:
    """
    Apply a provider-confirmed charge to a job. Shared by manual verify and the webhook.

    On a settled payment the charge is a duplicate only if it is the escrowed
    charge itself; any other paid charge means the customer paid twice and is
    flagged. A job that is no longer awaiting escrow, or an amount below the
    agreed price, is flagged for review instead of being forced through.
    """
    if job.payment_status in SETTLED_PAYMENT_STATES:
        if is_same_charge(job, reference, transaction_id):
            return CHARGE_DUPLICATE
        return flag_for_reconciliation(
            job,
            f"Second charge {reference or transaction_id} of {amount} on job already {job.payment_status.value}",
        )
    if job.status != JobStatus.PENDING_PAYMENT_ESCROW:
        return flag_for_reconciliation(
            job, f"Charge of {amount} confirmed while job was {job.status.value}"
        )
    if amount < (job.agreed_price or 0):
        return flag_for_reconciliation(
            job, f"Charge amount {amount} below agreed price {job.agreed_price}"
        )
    split = compute_fee_split(amount, job.platform_fee_percentage)
    job.record_escrow(amount, transaction_id, split.platform_fee, reference)
    return CHARGE_RECORDED


class PaymentService:
    """Service class for escrow, payout and refund operations on jobs."""

    def __init__(
        self, db: AsyncSession, gateway: PaymentGateway, notifier: NotificationService
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.users = UserDirectory(db)
        self.retry_attempts = settings.PERSISTENCE_RETRY_ATTEMPTS

    @staticmethod
    def _ensure_owner_or_admin(job: Job, actor: User) -> bool:
        """Returns True when the actor is acting as admin."""
        if actor.role == UserRole.ADMIN:
            return True
        job.ensure_owner(actor.id)
        return False

    # ---------------------------------------------------
    # Escrow Charge
    # ---------------------------------------------------
    async def initiate_escrow(self, job: Job) -> Job:
        """Open a provider charge for a job already committed as pending_payment_escrow."""
        job_id = job.id
        amount = job.agreed_price or 0
        payer = await self.users.get_contact_info(job.customer_id)
        try:
            charge = await self.gateway.initiate_charge(amount, payer, job_id.hex)
        except ProviderError as e:
            logger.warning(
                f"[PAYMENT] Charge initiation failed for job {job_id}; job stays pending: {e}"
            )
            raise

        job, _ = await persist_with_retry(
            self.db,
            job_id,
            lambda j: j.attach_charge(
                charge.reference,
                charge.access_code,
                charge.authorization_url,
                self.gateway.provider_name,
            ),
            self.retry_attempts,
        )
        logger.info(f"[PAYMENT] Escrow charge {charge.reference} opened for job {job_id}")
        return job

    async def reinitiate_escrow(self, actor: User, job_id: UUID) -> Job:
        """Owner re-opens checkout after a failed or missing charge."""
        job = await get_job_or_404(self.db, job_id)
        job.ensure_owner(actor.id)
        if job.status != JobStatus.PENDING_PAYMENT_ESCROW:
            raise InvalidTransitionError("Job is not awaiting an escrow payment")

        if job.escrow_reference and job.payment_status == PaymentStatus.PENDING:
            verification = await self.gateway.verify_charge(job.escrow_reference)
            if verification.status == ChargeOutcome.SUCCESS:
                return await self._record_verified_charge(
                    job_id, job.escrow_reference, verification.amount, verification.transaction_id
                )
            if verification.status == ChargeOutcome.PENDING and job.authorization_url:
                logger.info(f"[PAYMENT] Charge for job {job_id} still open; returning checkout")
                return job
        return await self.initiate_escrow(job)

    async def verify_escrow(self, actor: User, job_id: UUID) -> Job:
        """Manual verify-and-reconcile path for a job's escrow charge."""
        job = await get_job_or_404(self.db, job_id)
        if actor.role != UserRole.ADMIN and not job.is_participant(actor.id):
            raise NotAJobParticipant("Only job participants can verify its payment")
        if job.payment_status in SETTLED_PAYMENT_STATES:
            return job
        if not job.escrow_reference or job.is_cash:
            raise ValidationError("No escrow charge has been opened for this job")

        verification = await self.gateway.verify_charge(job.escrow_reference)
        logger.info(
            f"[PAYMENT] Verified charge {job.escrow_reference} for job {job_id}: {verification.status.value}"
        )
        if verification.status == ChargeOutcome.SUCCESS:
            return await self._record_verified_charge(
                job_id, job.escrow_reference, verification.amount, verification.transaction_id
            )
        if verification.status == ChargeOutcome.FAILED:
            job, _ = await persist_with_retry(
                self.db, job_id, lambda j: j.mark_charge_failed(), self.retry_attempts
            )
        return job

    async def _record_verified_charge(
        self, job_id: UUID, reference: str | None, amount: int, transaction_id: str | None
    ) -> Job:
        job, outcome = await persist_with_retry(
            self.db,
            job_id,
            lambda j: apply_charge_success(j, reference, amount, transaction_id),
            self.retry_attempts,
        )
        if outcome == CHARGE_RECORDED:
            payload = {"job_id": str(job_id), "amount": amount}
            await self.notifier.notify(job.customer_id, events.ESCROW_FUNDED, payload)
            await self.notifier.notify(job.fundi_id, events.ESCROW_FUNDED, payload)
        return job

    # ---------------------------------------------------
    # Release (Payout)
    # ---------------------------------------------------
    async def release_funds(self, job: Job) -> Job:
        """
        Pay the fundi for an approved job whose payout claim is committed.

        The claim reference doubles as the provider idempotency key. Success is
        recorded with retries and without a second payout call; a definitive
        failure keeps the money in escrow; a timeout leaves the claim pending
        for the webhook or `retry_payout` to resolve.
        """
        job_id = job.id
        reference = job.release_reference
        fundi_id = job.fundi_id
        if not reference or fundi_id is None:
            raise InvalidTransitionError("Job has no committed payout claim")
        split = compute_fee_split(job.payout_base, job.platform_fee_percentage)

        try:
            profile = await self.users.get_payout_profile(fundi_id)
            recipient = profile.payout_recipient_code
            if not recipient:
                recipient = await self.gateway.resolve_payout_recipient(
                    profile.mpesa_number, profile.full_name
                )
                await self.users.save_recipient_code(fundi_id, recipient)
            result = await self.gateway.payout(
                split.payee_amount, recipient, reference, f"Payment for job {job_id}"
            )
        except ProviderError as e:
            if e.outcome_unknown:
                logger.error(
                    f"[PAYMENT] Payout {reference} for job {job_id} has unknown outcome; awaiting confirmation"
                )
                raise
            await persist_with_retry(
                self.db, job_id, lambda j: j.record_payout_failure(e.message), self.retry_attempts
            )
            await self.notifier.notify(
                job.customer_id, events.PAYOUT_FAILED, {"job_id": str(job_id), "reason": e.message}
            )
            logger.warning(f"[PAYMENT] Payout for job {job_id} failed, funds stay in escrow: {e}")
            raise

        transfer_status = TransferStatus.SUCCESS if result.status == "success" else None
        try:
            job, released = await persist_with_retry(
                self.db,
                job_id,
                lambda j: j.mark_released(
                    split.payee_amount, result.transfer_code, reference, transfer_status
                ),
                self.retry_attempts,
            )
        except Exception:
            logger.critical(
                f"[PAYMENT] Payout {reference} for job {job_id} succeeded but could not be recorded"
            )
            raise

        if released:
            logger.info(f"[PAYMENT] Released {split.payee_amount} to fundi {fundi_id} for job {job_id}")
            await self.notifier.notify(
                fundi_id,
                events.PAYMENT_RELEASED,
                {"job_id": str(job_id), "amount": split.payee_amount, "fee": split.platform_fee},
            )
        return job

    async def retry_payout(self, actor: User, job_id: UUID) -> Job:
        """Administrative retry for an approved job whose payout failed or is unresolved."""
        job = await get_job_or_404(self.db, job_id)
        self._ensure_owner_or_admin(job, actor)
        if job.payment_status == PaymentStatus.RELEASED:
            return job
        if not job.customer_approved or job.is_cash:
            raise InvalidTransitionError("Only approved escrow jobs can retry a payout")

        if job.transfer_status == TransferStatus.PENDING and job.release_reference:
            job = await self._resolve_pending_payout(job)
            if job.payment_status == PaymentStatus.RELEASED:
                return job

        reference = f"REL_{job_id.hex}_{_now_ms()}"
        job.claim_payout(reference)
        await commit_job(self.db, job_id)
        logger.info(f"[PAYMENT] Payout retry claimed {reference} for job {job_id}")
        return await self.release_funds(job)

    async def _resolve_pending_payout(self, job: Job) -> Job:
        job_id = job.id
        reference = job.release_reference or ""
        try:
            verification = await self.gateway.verify_payout(reference)
            status = verification.status
        except ProviderRejected as e:
            # The provider has no such transfer, so it never happened.
            logger.info(f"[PAYMENT] Pending payout {reference} unknown to provider: {e.reason}")
            status = TransferStatus.FAILED

        if status == TransferStatus.PENDING:
            raise InvalidTransitionError(
                "Previous payout is still processing; wait for provider confirmation"
            )
        if status == TransferStatus.SUCCESS:
            split = compute_fee_split(job.payout_base, job.platform_fee_percentage)
            job, _ = await persist_with_retry(
                self.db,
                job_id,
                lambda j: j.mark_released(split.payee_amount, None, reference, TransferStatus.SUCCESS),
                self.retry_attempts,
            )
            return job
        job, _ = await persist_with_retry(
            self.db,
            job_id,
            lambda j: j.record_payout_failure(f"Transfer {status.value}"),
            self.retry_attempts,
        )
        return job

    # ---------------------------------------------------
    # Cancellation & Refund
    # ---------------------------------------------------
    async def cancel_and_refund(self, actor: User, job_id: UUID, reason: str | None) -> Job:
        """
        Cancel a job and refund any escrowed funds.

        Calling it again on a cancelled job retries a refund that failed.
        """
        job = await get_job_or_404(self.db, job_id)
        is_admin = self._ensure_owner_or_admin(job, actor)

        if job.status == JobStatus.CANCELLED:
            if job.payment_status == PaymentStatus.REFUNDED:
                return job
            if job.payment_status == PaymentStatus.ESCROW:
                if job.refund_status == RefundStatus.PENDING and job.reconciliation_required:
                    raise InvalidTransitionError(
                        "Previous refund has an unknown outcome; resolve it through reconciliation first"
                    )
                return await self._refund(job, reason or job.cancel_reason)
            raise InvalidTransitionError("Job is already cancelled")

        if (
            job.status == JobStatus.PENDING_PAYMENT_ESCROW
            and job.escrow_reference
            and job.payment_status == PaymentStatus.PENDING
        ):
            # Money may have arrived since the last check; capture it so it gets refunded.
            verification = await self.gateway.verify_charge(job.escrow_reference)
            if verification.status == ChargeOutcome.PENDING:
                raise ProviderError(
                    "Payment is still processing; cancel again once it settles", retryable=True
                )
            if verification.status == ChargeOutcome.SUCCESS:
                apply_charge_success(
                    job, job.escrow_reference, verification.amount, verification.transaction_id
                )

        needs_refund = job.cancel(actor.id, is_admin, reason)
        await commit_job(self.db, job_id)
        logger.info(f"[PAYMENT] Job {job_id} cancelled by {actor.id} (refund needed: {needs_refund})")

        payload = {"job_id": str(job_id), "reason": reason}
        await self.notifier.notify(job.customer_id, events.JOB_CANCELLED, payload)
        await self.notifier.notify(job.fundi_id, events.JOB_CANCELLED, payload)

        if needs_refund:
            return await self._refund(job, reason)
        return job

    async def _refund(self, job: Job, reason: str | None) -> Job:
        job_id = job.id
        charge_reference = job.escrow_reference or ""
        amount = job.escrow_amount or 0
        customer_id = job.customer_id
        note = f"Job {job_id} cancelled" + (f": {reason}" if reason else "")

        try:
            result = await self.gateway.refund(charge_reference, amount, note)
        except ProviderError as e:
            if e.outcome_unknown:
                await persist_with_retry(
                    self.db,
                    job_id,
                    lambda j: j.flag_reconciliation(f"Refund outcome unknown: {e.message}"),
                    self.retry_attempts,
                )
                logger.error(f"[PAYMENT] Reconciliation required: refund for job {job_id} timed out")
            else:
                await persist_with_retry(
                    self.db, job_id, lambda j: j.record_refund_failure(e.message), self.retry_attempts
                )
                logger.error(f"[PAYMENT] Refund for job {job_id} failed: {e}")
            raise

        job, _ = await persist_with_retry(
            self.db,
            job_id,
            lambda j: j.mark_refunded(result.refund_reference, amount),
            self.retry_attempts,
        )
        logger.info(f"[PAYMENT] Refunded {amount} for job {job_id}")
        await self.notifier.notify(
            customer_id, events.PAYMENT_REFUNDED, {"job_id": str(job_id), "amount": amount}
        )
        return job

    # ---------------------------------------------------
    # Reconciliation Queue (Admin)
    # ---------------------------------------------------
    async def list_reconciliation_queue(self, skip: int = 0, limit: int = 20) -> tuple[list[Job], int]:
        base = select(Job).where(Job.reconciliation_required.is_(True))
        total = (await self.db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
        rows = await self.db.execute(base.order_by(Job.updated_at.desc()).offset(skip).limit(limit))
        return list(rows.scalars().all()), total

    async def resolve_reconciliation(self, actor: User, job_id: UUID, note: str) -> Job:
        if actor.role != UserRole.ADMIN:
            raise AuthorizationError("Only admins can resolve reconciliation flags")
        job = await get_job_or_404(self.db, job_id)
        if not job.reconciliation_required:
            raise InvalidTransitionError("Job is not flagged for reconciliation")
        job.clear_reconciliation(f"{note} (by {actor.id})")
        await commit_job(self.db, job_id)
        logger.info(f"[PAYMENT] Reconciliation flag cleared on job {job_id} by {actor.id}")
        return job
