"""
app/payment/schemas.py

Payment Schemas
Pydantic schemas for the payment gateway contract and the payment endpoints:
- Gateway results (charge, payout, refund, fee split)
- Payment action responses and reconciliation queue entries
- Webhook acknowledgement
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.database.enums import JobStatus, PaymentMethod, PaymentStatus, RefundStatus, TransferStatus


# ---------------------------------------------------
# Gateway Result Schemas
# ---------------------------------------------------
class ChargeOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class ChargeInitiation(BaseModel):
    """Returned when a charge has been opened with the provider."""

    reference: str = Field(..., description="Provider reference for the charge")
    access_code: str | None = Field(None, description="Code the payer completes checkout with")
    authorization_url: str | None = Field(None, description="Checkout URL the payer is redirected to")


class ChargeVerification(BaseModel):
    status: ChargeOutcome
    amount: int = Field(..., description="Settled amount in major currency units")
    transaction_id: str | None = None


class PayoutResult(BaseModel):
    transfer_reference: str
    transfer_code: str | None = None
    status: str


class PayoutVerification(BaseModel):
    status: TransferStatus


class RefundResult(BaseModel):
    refund_reference: str | None = None
    status: str | None = None


class FeeSplit(BaseModel):
    platform_fee: int
    payee_amount: int


# ---------------------------------------------------
# Payment Endpoint Schemas
# ---------------------------------------------------
class PaymentRecordRead(BaseModel):
    """Escrow payment state of a job as seen by its participants."""

    job_id: UUID = Field(..., validation_alias="id")
    job_status: JobStatus = Field(..., validation_alias="status")
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    escrow_reference: str | None = None
    authorization_url: str | None = None
    access_code: str | None = None
    escrow_amount: int | None = None
    platform_fee: int | None = None
    release_amount: int | None = None
    release_reference: str | None = None
    transfer_status: TransferStatus | None = None
    transfer_failure_reason: str | None = None
    refund_amount: int | None = None
    refund_status: RefundStatus | None = None
    reconciliation_required: bool = False

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class RefundRequest(BaseModel):
    reason: str | None = Field(None, max_length=500, description="Why the job is being cancelled")


class ReconciliationEntry(BaseModel):
    job_id: UUID = Field(..., validation_alias="id")
    job_status: JobStatus = Field(..., validation_alias="status")
    payment_status: PaymentStatus
    transfer_status: TransferStatus | None = None
    refund_status: RefundStatus | None = None
    reconciliation_note: str | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class ResolveReconciliationRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000)


class WebhookAck(BaseModel):
    received: bool = True
    outcome: str = Field(..., description="What the handler did with the event")
