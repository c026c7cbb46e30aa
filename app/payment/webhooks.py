"""
app/payment/webhooks.py

Webhook Reconciliation Handler

Applies asynchronous provider events to jobs:
- charge.success           -> escrow recorded (same path as manual verify)
- transfer.success         -> payout confirmed, release completed if still pending
- transfer.failed/reversed -> transfer outcome recorded, job flagged for review

The signature is checked over the raw body before anything is parsed. Every
handler is idempotent through the job's own state checks; an optional Redis
key per delivery short-circuits exact re-deliveries.
"""

import hashlib
import hmac
import json
import logging
from typing import Any
from uuid import UUID

import redis.asyncio as redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import ReconciliationRequired, Unauthorized, ValidationError
from app.database.enums import PaymentStatus, TransferStatus
from app.job.models import Job
from app.job.store import persist_with_retry
from app.notification import services as events
from app.notification.services import NotificationService
from app.payment.paystack import MINOR_UNITS
from app.payment.services import CHARGE_RECORDED, apply_charge_success

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
DEDUP_PREFIX = "webhook:delivery:"

OUTCOME_DUPLICATE = "duplicate"
OUTCOME_IGNORED = "ignored"
OUTCOME_NOT_FOUND = "job_not_found"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


class WebhookHandler:
    """Verifies and applies one provider webhook delivery."""

    def __init__(
        self,
        db: AsyncSession,
        secret: str,
        dedup: redis.Redis | None,  # type: ignore[type-arg]
        notifier: NotificationService,
    ) -> None:
        self.db = db
        self.secret = secret
        self.dedup = dedup
        self.notifier = notifier
        self.retry_attempts = settings.PERSISTENCE_RETRY_ATTEMPTS

    # ---------------------------------------------------
    # Entry Point
    # ---------------------------------------------------
    def verify_signature(self, raw_body: bytes, signature: str | None) -> None:
        if not signature or not self.secret:
            logger.warning("[WEBHOOK] Missing signature or webhook secret")
            raise Unauthorized("Missing webhook signature")
        expected = compute_signature(self.secret, raw_body)
        if not hmac.compare_digest(expected, signature):
            logger.warning("[WEBHOOK] Invalid signature rejected")
            raise Unauthorized("Invalid webhook signature")

    async def handle(self, raw_body: bytes, signature: str | None) -> str:
        """Verify, dedupe and dispatch a delivery; returns what was done with it."""
        self.verify_signature(raw_body, signature)
        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise ValidationError("Webhook body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise ValidationError("Webhook body must be a JSON object")

        event = payload.get("event") or ""
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError("Webhook data must be a JSON object")
        logger.info(f"[WEBHOOK] Received {event} reference={data.get('reference')}")

        key = f"{DEDUP_PREFIX}{event}:{data.get('id')}:{data.get('reference')}"
        if not await self._claim_delivery(key):
            logger.info(f"[WEBHOOK] Duplicate delivery skipped: {key}")
            return OUTCOME_DUPLICATE

        try:
            if event == "charge.success":
                return await self._on_charge_success(data)
            if event == "transfer.success":
                return await self._on_transfer_success(data)
            if event in ("transfer.failed", "transfer.reversed"):
                return await self._on_transfer_failed(event, data)
        except Exception:
            await self._release_delivery(key)
            raise

        logger.info(f"[WEBHOOK] Unhandled event type acknowledged: {event}")
        return OUTCOME_IGNORED

    # ---------------------------------------------------
    # Delivery Dedup (Redis, optional)
    # ---------------------------------------------------
    async def _claim_delivery(self, key: str) -> bool:
        if not self.dedup:
            return True
        try:
            claimed = await self.dedup.set(
                key, "1", nx=True, ex=settings.WEBHOOK_DEDUP_TTL_SECONDS
            )
        except redis.RedisError as e:
            logger.error(f"[WEBHOOK] Redis dedup unavailable, relying on job state: {e}")
            return True
        return bool(claimed)

    async def _release_delivery(self, key: str) -> None:
        if not self.dedup:
            return
        try:
            await self.dedup.delete(key)
        except redis.RedisError as e:
            logger.error(f"[WEBHOOK] Failed to release dedup key {key}: {e}")

    # ---------------------------------------------------
    # Job Lookup
    # ---------------------------------------------------
    async def _find_job_id(self, column: Any, value: Any) -> UUID | None:
        if not value:
            return None
        result = await self.db.execute(select(Job.id).where(column == value))
        return result.scalar_one_or_none()

    async def _charge_job_id(self, data: dict[str, Any]) -> UUID | None:
        metadata = data.get("metadata")
        raw_id = metadata.get("job_id") if isinstance(metadata, dict) else None
        if raw_id:
            try:
                job_id = UUID(str(raw_id))
            except ValueError:
                logger.warning(f"[WEBHOOK] Ignoring malformed metadata.job_id={raw_id}")
            else:
                if await self._find_job_id(Job.id, job_id):
                    return job_id
        return await self._find_job_id(Job.escrow_reference, data.get("reference"))

    @staticmethod
    def _flag(job: Job, note: str) -> None:
        job.flag_reconciliation(note)
        error = ReconciliationRequired(note, details={"job_id": str(job.id)})
        logger.error(f"[WEBHOOK] {error.kind}: {error.message} (job {job.id})")

    # ---------------------------------------------------
    # Event Handlers
    # ---------------------------------------------------
    async def _on_charge_success(self, data: dict[str, Any]) -> str:
        job_id = await self._charge_job_id(data)
        if job_id is None:
            logger.warning(f"[WEBHOOK] No job for charge reference {data.get('reference')}")
            return OUTCOME_NOT_FOUND

        amount = int(data.get("amount") or 0) // MINOR_UNITS
        transaction_id = str(data["id"]) if data.get("id") is not None else None
        reference = data.get("reference")
        job, outcome = await persist_with_retry(
            self.db,
            job_id,
            lambda j: apply_charge_success(j, reference, amount, transaction_id),
            self.retry_attempts,
        )
        logger.info(f"[WEBHOOK] charge.success on job {job_id}: {outcome}")
        if outcome == CHARGE_RECORDED:
            payload = {"job_id": str(job_id), "amount": amount}
            await self.notifier.notify(job.customer_id, events.ESCROW_FUNDED, payload)
            await self.notifier.notify(job.fundi_id, events.ESCROW_FUNDED, payload)
        return outcome

    async def _on_transfer_success(self, data: dict[str, Any]) -> str:
        reference = data.get("reference")
        job_id = await self._find_job_id(Job.release_reference, reference)
        if job_id is None:
            logger.warning(f"[WEBHOOK] No job for transfer reference {reference}")
            return OUTCOME_NOT_FOUND

        amount = int(data.get("amount") or 0) // MINOR_UNITS
        transfer_code = data.get("transfer_code")

        def apply(job: Job) -> str:
            if job.payment_status == PaymentStatus.RELEASED:
                if job.transfer_status == TransferStatus.SUCCESS:
                    return OUTCOME_DUPLICATE
                job.record_transfer_outcome(TransferStatus.SUCCESS)
                return "confirmed"
            if job.payment_status == PaymentStatus.ESCROW:
                job.mark_released(
                    amount or job.release_amount or 0,
                    transfer_code,
                    reference or "",
                    TransferStatus.SUCCESS,
                )
                return "released"
            self._flag(job, f"Transfer {reference} succeeded while payment was {job.payment_status.value}")
            return "flagged"

        job, outcome = await persist_with_retry(self.db, job_id, apply, self.retry_attempts)
        logger.info(f"[WEBHOOK] transfer.success on job {job_id}: {outcome}")
        if outcome == "released":
            await self.notifier.notify(
                job.fundi_id, events.PAYMENT_RELEASED, {"job_id": str(job_id), "amount": amount}
            )
        return outcome

    async def _on_transfer_failed(self, event: str, data: dict[str, Any]) -> str:
        reference = data.get("reference")
        job_id = await self._find_job_id(Job.release_reference, reference)
        if job_id is None:
            logger.warning(f"[WEBHOOK] No job for transfer reference {reference}")
            return OUTCOME_NOT_FOUND

        status = TransferStatus.REVERSED if event == "transfer.reversed" else TransferStatus.FAILED
        reason = data.get("reason") or data.get("gateway_response") or event

        def apply(job: Job) -> str:
            if job.transfer_status == status:
                return OUTCOME_DUPLICATE
            job.record_transfer_outcome(status, reason)
            self._flag(
                job,
                f"Transfer {reference} {status.value} with payment {job.payment_status.value}: {reason}",
            )
            return "flagged"

        job, outcome = await persist_with_retry(self.db, job_id, apply, self.retry_attempts)
        if outcome == "flagged":
            await self.notifier.notify(
                job.fundi_id, events.PAYOUT_FAILED, {"job_id": str(job_id), "reason": reason}
            )
        return outcome
