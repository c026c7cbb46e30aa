"""
app/job/schemas.py

Job Schemas
Pydantic schemas for job-related operations:
- Job posting and allow-listed updates (Authenticated Customer)
- Proposal submission (Authenticated Fundi)
- Work start, progress, completion (Assigned Fundi)
- Approval, dispute, cancellation
- Reading jobs, proposals and proposal stats
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.database.enums import (
    JobStatus,
    JobUrgency,
    PaymentMethod,
    PaymentStatus,
    ProgressStage,
    ProposalStatus,
    RefundStatus,
    TransferStatus,
)


# ---------------------------------------------------
# Shared Fields Schema
# ---------------------------------------------------
class JobBase(BaseModel):
    """Base schema containing shared fields for job postings."""

    title: str = Field(..., min_length=3, max_length=200, description="Short job title")
    description: str = Field(..., min_length=10, max_length=5000)
    category: str = Field(..., min_length=2, max_length=100, description="Service category")
    sub_service: str | None = Field(None, max_length=100)
    urgency: JobUrgency = Field(JobUrgency.MEDIUM)
    budget_min: int = Field(..., gt=0, description="Lowest acceptable price")
    budget_max: int = Field(..., gt=0, description="Highest acceptable price")
    county: str | None = Field(None, max_length=100)
    city: str | None = Field(None, max_length=100)
    area: str | None = Field(None, max_length=100)
    address: str | None = Field(None, max_length=255)
    preferred_date: datetime | None = None


# ---------------------------------------------------
# Job Creation Schema (Authenticated Customer)
# ---------------------------------------------------
class JobCreate(JobBase):
    """Schema used when a customer posts a new job."""

    payment_method: PaymentMethod = Field(PaymentMethod.MPESA)

    @model_validator(mode="after")
    def check_budget(self) -> "JobCreate":
        if self.budget_min > self.budget_max:
            raise ValueError("budget_min cannot exceed budget_max")
        return self


# ---------------------------------------------------
# Job Update Schema (Owner, posted jobs only)
# ---------------------------------------------------
class JobUpdate(BaseModel):
    """Explicit allow-list of editable fields; anything else is rejected."""

    title: str | None = Field(None, min_length=3, max_length=200)
    description: str | None = Field(None, min_length=10, max_length=5000)
    category: str | None = Field(None, min_length=2, max_length=100)
    sub_service: str | None = Field(None, max_length=100)
    urgency: JobUrgency | None = None
    budget_min: int | None = Field(None, gt=0)
    budget_max: int | None = Field(None, gt=0)
    county: str | None = Field(None, max_length=100)
    city: str | None = Field(None, max_length=100)
    area: str | None = Field(None, max_length=100)
    address: str | None = Field(None, max_length=255)
    preferred_date: datetime | None = None
    payment_method: PaymentMethod | None = None

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------
# Proposal Schemas (Authenticated Fundi)
# ---------------------------------------------------
class ProposalCreate(BaseModel):
    proposed_price: int = Field(..., gt=0, description="Fundi's price for the job")
    estimated_duration: int | None = Field(None, gt=0, description="Estimated hours of work")
    proposal: str | None = Field(None, max_length=2000, description="Pitch to the customer")


class ProposalRead(BaseModel):
    id: UUID
    fundi_id: UUID
    proposed_price: int
    estimated_duration: int | None = None
    proposal: str | None = None
    status: ProposalStatus
    applied_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FundiProposalRead(ProposalRead):
    """A fundi's own proposal with the job it was placed on."""

    job_id: UUID
    job_title: str
    job_status: JobStatus


class ProposalStats(BaseModel):
    total: int = 0
    pending: int = 0
    accepted: int = 0
    rejected: int = 0


# ---------------------------------------------------
# Work Execution Schemas (Assigned Fundi / Participants)
# ---------------------------------------------------
class ProgressCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)
    images: list[str] = Field(default_factory=list, max_length=20)
    stage: ProgressStage = ProgressStage.IN_PROGRESS


class ProgressRead(BaseModel):
    id: UUID
    update_by: UUID
    message: str
    images: list[str]
    stage: ProgressStage
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class JobComplete(BaseModel):
    completion_images: list[str] = Field(default_factory=list, max_length=20)
    completion_notes: str | None = Field(None, max_length=2000)
    actual_price: int | None = Field(None, gt=0, description="Final price if it differs from agreed")


# ---------------------------------------------------
# Approval, Dispute & Cancellation Schemas
# ---------------------------------------------------
class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=5, max_length=2000)


class CancelJobRequest(BaseModel):
    """Schema used when an owner or admin cancels a job."""

    cancel_reason: str | None = Field(
        None, max_length=500, description="Reason provided for cancelling the job"
    )


# ---------------------------------------------------
# Listing Filters
# ---------------------------------------------------
class JobFilters(BaseModel):
    status: JobStatus | None = None
    category: str | None = None
    urgency: JobUrgency | None = None
    city: str | None = None
    county: str | None = None


class MyJobFilters(BaseModel):
    role: Literal["customer", "fundi"] | None = None
    status: JobStatus | None = None


# ---------------------------------------------------
# Read Job Schemas
# ---------------------------------------------------
class PaymentSummary(BaseModel):
    method: PaymentMethod
    status: PaymentStatus
    platform_fee_percentage: float
    platform_fee: int | None = None
    escrow_amount: int | None = None
    escrow_reference: str | None = None
    authorization_url: str | None = None
    release_amount: int | None = None
    transfer_status: TransferStatus | None = None
    refund_amount: int | None = None
    refund_status: RefundStatus | None = None


class JobRead(JobBase):
    """Schema returned when reading job details."""

    id: UUID = Field(..., description="Job unique identifier")
    customer_id: UUID
    fundi_id: UUID | None = None
    status: JobStatus = Field(..., description="Current status of the job")
    currency: str
    agreed_price: int | None = None
    actual_price: int | None = None
    payment: PaymentSummary
    proposals: list[ProposalRead] = Field(default_factory=list)
    progress: list[ProgressRead] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    completion_images: list[str] = Field(default_factory=list)
    completion_notes: str | None = None
    customer_approved: bool = False
    approved_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancel_reason: str | None = None
    disputed_at: datetime | None = None
    dispute_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def embed_payment(cls, data: object) -> object:
        """Group the job's flat payment columns into the nested `payment` record."""
        if isinstance(data, dict) or not hasattr(data, "payment_status"):
            return data
        values = {name: getattr(data, name) for name in JOB_READ_FIELDS if hasattr(data, name)}
        values["payment"] = PaymentSummary(
            method=data.payment_method,
            status=data.payment_status,
            platform_fee_percentage=data.platform_fee_percentage,
            platform_fee=data.platform_fee,
            escrow_amount=data.escrow_amount,
            escrow_reference=data.escrow_reference,
            authorization_url=data.authorization_url,
            release_amount=data.release_amount,
            transfer_status=data.transfer_status,
            refund_amount=data.refund_amount,
            refund_status=data.refund_status,
        )
        return values


JOB_READ_FIELDS = [name for name in JobRead.model_fields if name != "payment"]
