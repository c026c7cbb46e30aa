# tests/payment/test_payment_services.py
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    AuthorizationError,
    InvalidTransitionError,
    NotAJobParticipant,
    NotJobOwner,
    ProviderError,
    ProviderRejected,
    ProviderTimeout,
    ValidationError,
)
from app.database.enums import JobStatus, PaymentMethod, PaymentStatus, RefundStatus, TransferStatus
from app.database.models import User
from app.job.services import JobService
from app.job.store import get_job_or_404
from app.payment.schemas import ChargeOutcome
from app.payment.services import PaymentService
from tests.helpers import (
    FakeGateway,
    RecordingNotifier,
    awaiting_escrow_job_id,
    completed_job_id,
    escrowed_job_id,
    post_with_proposals,
)


@pytest.fixture
def jobs(db_session: AsyncSession, fake_gateway: FakeGateway, notifier: RecordingNotifier) -> JobService:
    return JobService(db_session, fake_gateway, notifier)


@pytest.fixture
def payments(
    db_session: AsyncSession, fake_gateway: FakeGateway, notifier: RecordingNotifier
) -> PaymentService:
    return PaymentService(db_session, fake_gateway, notifier)


# --- Escrow Verification ---


@pytest.mark.asyncio
async def test_verify_records_failed_charge_and_reinitiate_opens_new_one(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await awaiting_escrow_job_id(jobs, db_users)
    fake_gateway.charge_status = ChargeOutcome.FAILED

    job = await payments.verify_escrow(db_users["customer"], job_id)
    assert job.payment_status == PaymentStatus.FAILED
    first_reference = job.escrow_reference

    job = await payments.reinitiate_escrow(db_users["customer"], job_id)
    assert job.payment_status == PaymentStatus.PENDING
    assert job.escrow_reference != first_reference
    assert len(fake_gateway.calls["initiate_charge"]) == 2


@pytest.mark.asyncio
async def test_reinitiate_returns_open_checkout(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await awaiting_escrow_job_id(jobs, db_users)
    fake_gateway.charge_status = ChargeOutcome.PENDING

    job = await payments.reinitiate_escrow(db_users["customer"], job_id)

    assert job.authorization_url.startswith("https://checkout.test/")
    assert len(fake_gateway.calls["initiate_charge"]) == 1


@pytest.mark.asyncio
async def test_reinitiate_records_charge_paid_in_the_meantime(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await awaiting_escrow_job_id(jobs, db_users)

    job = await payments.reinitiate_escrow(db_users["customer"], job_id)

    assert job.status == JobStatus.ASSIGNED
    assert job.payment_status == PaymentStatus.ESCROW
    assert len(fake_gateway.calls["initiate_charge"]) == 1


@pytest.mark.asyncio
async def test_verify_access_rules(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User]
) -> None:
    job_id = await awaiting_escrow_job_id(jobs, db_users)
    with pytest.raises(NotAJobParticipant):
        await payments.verify_escrow(db_users["other_fundi"], job_id)
    with pytest.raises(NotJobOwner):
        await payments.reinitiate_escrow(db_users["fundi"], job_id)

    job = await payments.verify_escrow(db_users["admin"], job_id)
    assert job.payment_status == PaymentStatus.ESCROW


@pytest.mark.asyncio
async def test_verify_cash_job_is_rejected(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User]
) -> None:
    job_id = await post_with_proposals(jobs, db_users, PaymentMethod.CASH)
    await jobs.accept_proposal(db_users["customer"], job_id, db_users["fundi"].id)
    with pytest.raises(ValidationError):
        await payments.verify_escrow(db_users["customer"], job_id)


# --- Payout Retry ---


@pytest.mark.asyncio
async def test_retry_payout_requires_approval(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await completed_job_id(jobs, db_users, fake_gateway)
    with pytest.raises(InvalidTransitionError):
        await payments.retry_payout(db_users["customer"], job_id)
    with pytest.raises(NotJobOwner):
        await payments.retry_payout(db_users["fundi"], job_id)


@pytest.mark.asyncio
async def test_retry_payout_waits_while_provider_still_processing(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await completed_job_id(jobs, db_users, fake_gateway)
    fake_gateway.payout_error = ProviderTimeout("Read timed out")
    with pytest.raises(ProviderTimeout):
        await jobs.approve_completion(db_users["customer"], job_id)

    fake_gateway.payout_error = None
    fake_gateway.verify_payout_status = TransferStatus.PENDING
    with pytest.raises(InvalidTransitionError):
        await payments.retry_payout(db_users["admin"], job_id)
    assert len(fake_gateway.calls["payout"]) == 1


@pytest.mark.asyncio
async def test_retry_payout_after_failed_transfer_pays_again(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await completed_job_id(jobs, db_users, fake_gateway)
    fake_gateway.payout_error = ProviderTimeout("Read timed out")
    with pytest.raises(ProviderTimeout):
        await jobs.approve_completion(db_users["customer"], job_id)

    fake_gateway.payout_error = None
    fake_gateway.verify_payout_status = TransferStatus.FAILED
    job = await payments.retry_payout(db_users["admin"], job_id)

    assert job.payment_status == PaymentStatus.RELEASED
    assert len(fake_gateway.calls["payout"]) == 2


@pytest.mark.asyncio
async def test_retry_payout_on_released_job_is_noop(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await completed_job_id(jobs, db_users, fake_gateway)
    await jobs.approve_completion(db_users["customer"], job_id)

    job = await payments.retry_payout(db_users["customer"], job_id)
    assert job.payment_status == PaymentStatus.RELEASED
    assert len(fake_gateway.calls["payout"]) == 1


@pytest.mark.asyncio
async def test_unresolvable_recipient_keeps_escrow(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await completed_job_id(jobs, db_users, fake_gateway)
    fake_gateway.rejected_accounts = {"254712000002", "+254712000002", "0712000002"}

    with pytest.raises(ProviderRejected):
        await jobs.approve_completion(db_users["customer"], job_id)

    job = await get_job_or_404(payments.db, job_id)
    assert job.payment_status == PaymentStatus.ESCROW
    assert job.transfer_status == TransferStatus.FAILED
    assert not fake_gateway.calls["payout"]


# --- Refunds ---


@pytest.mark.asyncio
async def test_refund_timeout_flags_and_blocks_blind_retry(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await escrowed_job_id(jobs, db_users, fake_gateway)
    fake_gateway.refund_error = ProviderTimeout("Read timed out")

    with pytest.raises(ProviderTimeout):
        await payments.cancel_and_refund(db_users["customer"], job_id, "No longer needed")

    job = await get_job_or_404(payments.db, job_id)
    assert job.status == JobStatus.CANCELLED
    assert job.refund_status == RefundStatus.PENDING
    assert job.reconciliation_required is True

    fake_gateway.refund_error = None
    with pytest.raises(InvalidTransitionError):
        await payments.cancel_and_refund(db_users["customer"], job_id, None)
    assert len(fake_gateway.calls["refund"]) == 1


@pytest.mark.asyncio
async def test_cancel_while_charge_processing_is_refused(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await awaiting_escrow_job_id(jobs, db_users)
    fake_gateway.charge_status = ChargeOutcome.PENDING

    with pytest.raises(ProviderError) as exc_info:
        await payments.cancel_and_refund(db_users["customer"], job_id, None)

    assert exc_info.value.retryable is True
    job = await get_job_or_404(payments.db, job_id)
    assert job.status == JobStatus.PENDING_PAYMENT_ESCROW


@pytest.mark.asyncio
async def test_cancelled_refunded_job_is_idempotent(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    job_id = await escrowed_job_id(jobs, db_users, fake_gateway)
    await payments.cancel_and_refund(db_users["customer"], job_id, None)

    job = await payments.cancel_and_refund(db_users["customer"], job_id, None)
    assert job.payment_status == PaymentStatus.REFUNDED
    assert len(fake_gateway.calls["refund"]) == 1


# --- Reconciliation Queue ---


@pytest.mark.asyncio
async def test_reconciliation_queue_and_resolve(
    jobs: JobService, payments: PaymentService, db_users: dict[str, User], fake_gateway: FakeGateway
) -> None:
    flagged_id = await escrowed_job_id(jobs, db_users, fake_gateway)
    await escrowed_job_id(jobs, db_users, fake_gateway)
    fake_gateway.refund_error = ProviderTimeout("Read timed out")
    with pytest.raises(ProviderTimeout):
        await payments.cancel_and_refund(db_users["customer"], flagged_id, None)

    queue, total = await payments.list_reconciliation_queue()
    assert total == 1
    assert queue[0].id == flagged_id

    with pytest.raises(AuthorizationError):
        await payments.resolve_reconciliation(db_users["customer"], flagged_id, "checked")

    job = await payments.resolve_reconciliation(db_users["admin"], flagged_id, "Refund confirmed on dashboard")
    assert job.reconciliation_required is False
    assert "Refund confirmed on dashboard" in job.reconciliation_note

    _, total = await payments.list_reconciliation_queue()
    assert total == 0
    with pytest.raises(InvalidTransitionError):
        await payments.resolve_reconciliation(db_users["admin"], flagged_id, "again")
