"""
tests/helpers.py

Shared test doubles and builders:
- FakeGateway: in-memory PaymentGateway that records every call
- RecordingNotifier: collects notifications instead of writing them
- make_user / make_job: transient model builders
- Lifecycle flows that drive a job to a given state through the services
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import ProviderError, ProviderRejected
from app.database.enums import PaymentMethod, TransferStatus, UserRole
from app.database.models import User
from app.job import schemas
from app.job.models import Job
from app.job.services import JobService
from app.job.store import get_job_or_404
from app.payment.gateway import PaymentGateway
from app.payment.schemas import (
    ChargeInitiation,
    ChargeOutcome,
    ChargeVerification,
    PayoutResult,
    PayoutVerification,
    RefundResult,
)
from app.payment.services import PaymentService
from app.users.schemas import ContactInfo


class FakeGateway(PaymentGateway):
    """Set the `*_error` attributes to make the matching call raise."""

    provider_name = "fake"

    def __init__(self) -> None:
        super().__init__()
        self.calls: dict[str, list[tuple[Any, ...]]] = {
            "initiate_charge": [],
            "verify_charge": [],
            "create_recipient": [],
            "payout": [],
            "verify_payout": [],
            "refund": [],
        }
        self.charge_status = ChargeOutcome.SUCCESS
        self.charge_amount: int | None = None
        self.payout_status = "success"
        self.verify_payout_status = TransferStatus.SUCCESS
        self.rejected_accounts: set[str] = set()
        self.initiate_error: ProviderError | None = None
        self.payout_error: ProviderError | None = None
        self.refund_error: ProviderError | None = None
        self._charges: dict[str, int] = {}

    async def initiate_charge(self, amount: int, payer: ContactInfo, job_ref: str) -> ChargeInitiation:
        self.calls["initiate_charge"].append((amount, payer.user_id, job_ref))
        if self.initiate_error:
            raise self.initiate_error
        reference = f"JOB_{job_ref}_{len(self.calls['initiate_charge'])}"
        self._charges[reference] = amount
        return ChargeInitiation(
            reference=reference,
            access_code=f"AC_{reference}",
            authorization_url=f"https://checkout.test/{reference}",
        )

    async def verify_charge(self, reference: str) -> ChargeVerification:
        self.calls["verify_charge"].append((reference,))
        if self.charge_amount is not None:
            amount = self.charge_amount
        else:
            amount = self._charges.get(reference, 0)
        return ChargeVerification(
            status=self.charge_status, amount=amount, transaction_id=f"TX_{reference}"
        )

    async def _create_recipient(self, account_number: str, payee_name: str) -> str:
        self.calls["create_recipient"].append((account_number, payee_name))
        if account_number in self.rejected_accounts:
            raise ProviderRejected(f"Account {account_number} rejected")
        return f"RCP_{account_number}"

    async def payout(self, amount: int, recipient_code: str, reference: str, reason: str) -> PayoutResult:
        self.calls["payout"].append((amount, recipient_code, reference))
        if self.payout_error:
            raise self.payout_error
        return PayoutResult(
            transfer_reference=reference, transfer_code=f"TRF_{reference}", status=self.payout_status
        )

    async def verify_payout(self, reference: str) -> PayoutVerification:
        self.calls["verify_payout"].append((reference,))
        return PayoutVerification(status=self.verify_payout_status)

    async def refund(self, charge_reference: str, amount: int, note: str) -> RefundResult:
        self.calls["refund"].append((charge_reference, amount))
        if self.refund_error:
            raise self.refund_error
        return RefundResult(refund_reference=f"RF_{charge_reference}", status="processed")


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[UUID, str, dict[str, Any]]] = []

    async def notify(self, user_id: UUID | None, event_type: str, payload: dict[str, Any]) -> None:
        if user_id is None:
            return
        self.sent.append((user_id, event_type, payload))

    def events_for(self, user_id: UUID) -> list[str]:
        return [event for uid, event, _ in self.sent if uid == user_id]


def make_user(role: UserRole, first_name: str, phone: str) -> User:
    now = datetime.now(timezone.utc)
    return User(
        id=uuid4(),
        email=f"{first_name.lower()}.{uuid4().hex[:6]}@example.com",
        phone_number=phone,
        mpesa_number=phone if role == UserRole.FUNDI else None,
        role=role,
        first_name=first_name,
        last_name="Test",
        is_active=True,
        completed_jobs=0,
        created_at=now,
        updated_at=now,
    )


def make_job(
    customer_id: UUID,
    *,
    payment_method: PaymentMethod = PaymentMethod.MPESA,
    budget_min: int = 1000,
    budget_max: int = 2000,
) -> Job:
    """Transient posted job; not attached to any session."""
    return Job.post(
        customer_id,
        title="Fix kitchen sink",
        description="Leaking pipe under the kitchen sink needs replacing.",
        category="plumbing",
        budget_min=budget_min,
        budget_max=budget_max,
        payment_method=payment_method,
        city="Nairobi",
        county="Nairobi",
    )


# --- Lifecycle flows (service level) ---


def job_payload(method: PaymentMethod = PaymentMethod.MPESA) -> schemas.JobCreate:
    return schemas.JobCreate(
        title="Fix kitchen sink",
        description="Leaking pipe under the kitchen sink needs replacing.",
        category="plumbing",
        budget_min=1000,
        budget_max=2000,
        city="Nairobi",
        payment_method=method,
    )


async def post_with_proposals(
    service: JobService, users: dict[str, User], method: PaymentMethod = PaymentMethod.MPESA
) -> UUID:
    job = await service.create_job(users["customer"].id, job_payload(method))
    await service.submit_proposal(users["fundi"], job.id, schemas.ProposalCreate(proposed_price=1500))
    await service.submit_proposal(
        users["other_fundi"], job.id, schemas.ProposalCreate(proposed_price=1700)
    )
    return job.id


async def awaiting_escrow_job_id(service: JobService, users: dict[str, User]) -> UUID:
    job_id = await post_with_proposals(service, users)
    await service.accept_proposal(users["customer"], job_id, users["fundi"].id)
    return job_id


async def escrowed_job_id(
    service: JobService, users: dict[str, User], gateway: FakeGateway
) -> UUID:
    job_id = await awaiting_escrow_job_id(service, users)
    await PaymentService(service.db, gateway, service.notifier).verify_escrow(users["customer"], job_id)
    return job_id


async def completed_job_id(
    service: JobService,
    users: dict[str, User],
    gateway: FakeGateway,
    actual_price: int | None = None,
) -> UUID:
    job_id = await escrowed_job_id(service, users, gateway)
    await service.start_job(users["fundi"], job_id)
    await service.complete_job(
        users["fundi"], job_id, schemas.JobComplete(actual_price=actual_price)
    )
    return job_id


async def fresh_job(factory: async_sessionmaker[AsyncSession], job_id: UUID) -> Job:
    async with factory() as session:
        return await get_job_or_404(session, job_id)


async def fresh_user(factory: async_sessionmaker[AsyncSession], user_id: UUID) -> User:
    async with factory() as session:
        return await session.get(User, user_id)
