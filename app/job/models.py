"""
job/models.py

Defines the Job aggregate and its owned child records.
- Job: posting details, embedded escrow payment record, completion record
- JobProposal: a fundi's bid, unique per (job, fundi)
- JobProgressEntry: append-only work log

The Job exposes narrow mutators that check their own preconditions and raise
domain errors, so callers can never write a half-transitioned job. Every
mutator touches `updated_at`, which forces an UPDATE of the job row and with
it the `version` compare-and-swap check.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.exceptions import (
    AlreadyApproved,
    AuthorizationError,
    DuplicateProposal,
    InvalidTransitionError,
    JobNotAcceptingProposals,
    NotAJobParticipant,
    NotAssignedFundi,
    NotAwaitingEscrow,
    NotCompleted,
    NotJobOwner,
    ProposalNotFound,
    ValidationError,
)
from app.database.base import Base, utcnow
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
# State Groups
# ---------------------------------------------------
PROPOSAL_OPEN_STATES = {JobStatus.POSTED, JobStatus.APPLIED}
OWNER_CANCELLABLE_STATES = {
    JobStatus.POSTED,
    JobStatus.APPLIED,
    JobStatus.PENDING_PAYMENT_ESCROW,
    JobStatus.ASSIGNED,
    JobStatus.IN_PROGRESS,
}
ADMIN_CANCELLABLE_STATES = OWNER_CANCELLABLE_STATES | {JobStatus.DISPUTED}
PROGRESS_STATES = {JobStatus.ASSIGNED, JobStatus.IN_PROGRESS}

# Fields a job owner may edit while the job is still posted.
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "sub_service",
        "urgency",
        "budget_min",
        "budget_max",
        "county",
        "city",
        "area",
        "address",
        "preferred_date",
        "payment_method",
    }
)
# Editable fields backed by NOT NULL columns.
REQUIRED_FIELDS = frozenset(
    {"title", "description", "category", "urgency", "budget_min", "budget_max", "payment_method"}
)

CASH_MARKER = "CASH"


# ---------------------------------------------------
# MODEL: Job Proposal
# ---------------------------------------------------
class JobProposal(Base):
    __tablename__ = "job_proposals"
    __table_args__ = (UniqueConstraint("job_id", "fundi_id", name="uq_job_proposals_job_fundi"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    fundi_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, comment="Fundi who submitted the bid"
    )
    proposed_price: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_duration: Mapped[int | None] = mapped_column(
        Integer, nullable=True, comment="Estimated duration in hours"
    )
    proposal: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus), default=ProposalStatus.PENDING, nullable=False
    )
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    job: Mapped["Job"] = relationship("Job", back_populates="proposals")


# ---------------------------------------------------
# MODEL: Work Progress Entry (append-only)
# ---------------------------------------------------
class JobProgressEntry(Base):
    __tablename__ = "job_progress_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    update_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    images: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    stage: Mapped[ProgressStage] = mapped_column(Enum(ProgressStage), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    job: Mapped["Job"] = relationship("Job", back_populates="progress")


# ---------------------------------------------------
# MODEL: Job (aggregate root)
# ---------------------------------------------------
class Job(Base):
    __tablename__ = "jobs"

    # Basic Identifiers & Parties
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4, comment="Unique identifier for the job"
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True, comment="Customer who posted the job"
    )
    fundi_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True, comment="Assigned fundi"
    )

    # Job Details
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    sub_service: Mapped[str | None] = mapped_column(String(100), nullable=True)
    urgency: Mapped[JobUrgency] = mapped_column(
        Enum(JobUrgency), default=JobUrgency.MEDIUM, nullable=False
    )
    budget_min: Mapped[int] = mapped_column(Integer, nullable=False)
    budget_max: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="KES", nullable=False)
    county: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    area: Mapped[str | None] = mapped_column(String(100), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    preferred_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Status & Pricing
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus), default=JobStatus.POSTED, nullable=False, index=True
    )
    agreed_price: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_price: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Payment Record: general
    payment_method: Mapped[PaymentMethod] = mapped_column(
        Enum(PaymentMethod), default=PaymentMethod.MPESA, nullable=False
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    payment_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    platform_fee_percentage: Mapped[float] = mapped_column(Float, default=10.0, nullable=False)
    platform_fee: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Payment Record: charge / escrow phase
    escrow_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    access_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    authorization_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    escrow_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    escrow_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    escrow_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Payment Record: release / payout phase
    release_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    release_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    release_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    release_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transfer_status: Mapped[TransferStatus | None] = mapped_column(
        Enum(TransferStatus), nullable=True
    )
    transfer_completed_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    transfer_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Payment Record: refund phase
    refund_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_status: Mapped[RefundStatus | None] = mapped_column(Enum(RefundStatus), nullable=True)

    # Reconciliation flag (manual review queue)
    reconciliation_required: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, index=True
    )
    reconciliation_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Completion Record
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_images: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    completion_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Cancellation & Dispute
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency & audit
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Owned children
    proposals: Mapped[list[JobProposal]] = relationship(
        JobProposal,
        back_populates="job",
        order_by=JobProposal.applied_at,
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    progress: Mapped[list[JobProgressEntry]] = relationship(
        JobProgressEntry,
        back_populates="job",
        order_by=JobProgressEntry.created_at,
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # ---------------------------------------------------
    # Construction
    # ---------------------------------------------------
    @classmethod
    def post(
        cls,
        customer_id: uuid.UUID,
        *,
        title: str,
        description: str,
        category: str,
        budget_min: int,
        budget_max: int,
        payment_method: PaymentMethod = PaymentMethod.MPESA,
        platform_fee_percentage: float = 10.0,
        currency: str = "KES",
        urgency: JobUrgency = JobUrgency.MEDIUM,
        **details: Any,
    ) -> "Job":
        """Build a freshly posted job with every lifecycle field explicitly initialised."""
        if budget_min > budget_max:
            raise ValidationError("budget_min cannot exceed budget_max")
        now = utcnow()
        return cls(
            id=uuid.uuid4(),
            customer_id=customer_id,
            title=title,
            description=description,
            category=category,
            budget_min=budget_min,
            budget_max=budget_max,
            currency=currency,
            urgency=urgency,
            status=JobStatus.POSTED,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            platform_fee_percentage=platform_fee_percentage,
            reconciliation_required=False,
            customer_approved=False,
            completion_images=[],
            created_at=now,
            updated_at=now,
            **details,
        )

    # ---------------------------------------------------
    # Queries
    # ---------------------------------------------------
    @property
    def is_cash(self) -> bool:
        return self.payment_method == PaymentMethod.CASH

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id == self.customer_id or (self.fundi_id is not None and user_id == self.fundi_id)

    def proposal_for(self, fundi_id: uuid.UUID) -> JobProposal | None:
        for proposal in self.proposals:
            if proposal.fundi_id == fundi_id:
                return proposal
        return None

    @property
    def accepted_proposal(self) -> JobProposal | None:
        return next((p for p in self.proposals if p.status == ProposalStatus.ACCEPTED), None)

    @property
    def payout_base(self) -> int:
        """Amount the fee split runs on: the final price, capped at what escrow holds."""
        held = self.escrow_amount or 0
        return min(self.actual_price or held, held)

    def ensure_owner(self, actor_id: uuid.UUID) -> None:
        if actor_id != self.customer_id:
            raise NotJobOwner("Only the job owner can perform this action")

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def _cash_marker(self) -> str:
        return f"{CASH_MARKER}_{self.id.hex}"

    # ---------------------------------------------------
    # Posting
    # ---------------------------------------------------
    def update_details(self, changes: dict[str, Any]) -> None:
        if self.status != JobStatus.POSTED:
            raise InvalidTransitionError("Only posted jobs can be edited")
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        cleared = sorted(f for f in REQUIRED_FIELDS if f in changes and changes[f] is None)
        if cleared:
            raise ValidationError(
                f"Fields cannot be null: {', '.join(cleared)}", details={"fields": cleared}
            )
        budget_min = changes.get("budget_min", self.budget_min)
        budget_max = changes.get("budget_max", self.budget_max)
        if budget_min > budget_max:
            raise ValidationError("budget_min cannot exceed budget_max")
        for field, value in changes.items():
            setattr(self, field, value)
        self._touch()

    # ---------------------------------------------------
    # Bidding
    # ---------------------------------------------------
    def add_proposal(
        self,
        fundi_id: uuid.UUID,
        proposed_price: int,
        estimated_duration: int | None,
        text: str | None,
    ) -> JobProposal:
        if fundi_id == self.customer_id:
            raise AuthorizationError("You cannot submit a proposal on your own job")
        if self.status not in PROPOSAL_OPEN_STATES:
            raise JobNotAcceptingProposals(f"Job is {self.status.value} and not accepting proposals")
        if self.proposal_for(fundi_id) is not None:
            raise DuplicateProposal("You have already submitted a proposal for this job")

        proposal = JobProposal(
            id=uuid.uuid4(),
            fundi_id=fundi_id,
            proposed_price=proposed_price,
            estimated_duration=estimated_duration,
            proposal=text,
            status=ProposalStatus.PENDING,
            applied_at=utcnow(),
        )
        self.proposals.append(proposal)
        if self.status == JobStatus.POSTED:
            self.status = JobStatus.APPLIED
        self._touch()
        return proposal

    def accept_proposal(self, fundi_id: uuid.UUID) -> JobProposal:
        if self.status != JobStatus.APPLIED:
            raise InvalidTransitionError(
                f"Proposals can only be accepted on applied jobs (job is {self.status.value})"
            )
        chosen = self.proposal_for(fundi_id)
        if chosen is None:
            raise ProposalNotFound("No proposal from this fundi on the job")

        for proposal in self.proposals:
            proposal.status = (
                ProposalStatus.ACCEPTED if proposal is chosen else ProposalStatus.REJECTED
            )
        self.fundi_id = chosen.fundi_id
        self.agreed_price = chosen.proposed_price

        if self.is_cash:
            # Cash jobs skip escrow; markers keep the audit trail uniform.
            marker = self._cash_marker()
            self.escrow_amount = chosen.proposed_price
            self.escrow_reference = marker
            self.escrow_transaction_id = marker
            self.escrow_date = utcnow()
            self.status = JobStatus.ASSIGNED
        else:
            self.status = JobStatus.PENDING_PAYMENT_ESCROW
        self._touch()
        return chosen

    # ---------------------------------------------------
    # Escrow Charge
    # ---------------------------------------------------
    def _require_awaiting_escrow(self) -> None:
        if self.status != JobStatus.PENDING_PAYMENT_ESCROW or self.payment_status not in (
            PaymentStatus.PENDING,
            PaymentStatus.FAILED,
        ):
            raise NotAwaitingEscrow("Job is not awaiting an escrow payment")

    def attach_charge(
        self, reference: str, access_code: str | None, authorization_url: str | None, provider: str
    ) -> None:
        self._require_awaiting_escrow()
        self.escrow_reference = reference
        self.access_code = access_code
        self.authorization_url = authorization_url
        self.payment_provider = provider
        self.payment_status = PaymentStatus.PENDING
        self._touch()

    def mark_charge_failed(self) -> None:
        self._require_awaiting_escrow()
        self.payment_status = PaymentStatus.FAILED
        self._touch()

    def record_escrow(
        self, amount: int, transaction_id: str | None, fee: int, reference: str | None = None
    ) -> None:
        """`reference` re-points the escrow at the charge that was actually paid."""
        self._require_awaiting_escrow()
        if reference:
            self.escrow_reference = reference
        self.escrow_amount = amount
        self.escrow_transaction_id = transaction_id
        self.escrow_date = utcnow()
        self.platform_fee = fee
        self.payment_status = PaymentStatus.ESCROW
        self.status = JobStatus.ASSIGNED
        self._touch()

    # ---------------------------------------------------
    # Work Execution
    # ---------------------------------------------------
    def _append_entry(
        self, actor_id: uuid.UUID, message: str, images: list[str] | None, stage: ProgressStage
    ) -> JobProgressEntry:
        entry = JobProgressEntry(
            id=uuid.uuid4(),
            update_by=actor_id,
            message=message,
            images=list(images or []),
            stage=stage,
            created_at=utcnow(),
        )
        self.progress.append(entry)
        return entry

    def start_work(self, actor_id: uuid.UUID) -> None:
        if actor_id != self.fundi_id:
            raise NotAssignedFundi("Only the assigned fundi can start this job")
        if self.status != JobStatus.ASSIGNED:
            raise InvalidTransitionError(f"Cannot start a job that is {self.status.value}")
        self.status = JobStatus.IN_PROGRESS
        self.started_at = utcnow()
        self._append_entry(actor_id, "Work started", None, ProgressStage.STARTED)
        self._touch()

    def append_progress(
        self,
        actor_id: uuid.UUID,
        message: str,
        images: list[str] | None = None,
        stage: ProgressStage = ProgressStage.IN_PROGRESS,
    ) -> JobProgressEntry:
        if not self.is_participant(actor_id):
            raise NotAJobParticipant("Only the job owner or assigned fundi can add progress")
        if self.status not in PROGRESS_STATES:
            raise InvalidTransitionError(f"Cannot add progress to a job that is {self.status.value}")
        entry = self._append_entry(actor_id, message, images, stage)
        self._touch()
        return entry

    def complete_work(
        self,
        actor_id: uuid.UUID,
        images: list[str] | None,
        notes: str | None,
        actual_price: int | None = None,
    ) -> None:
        if actor_id != self.fundi_id:
            raise NotAssignedFundi("Only the assigned fundi can complete this job")
        if self.status != JobStatus.IN_PROGRESS:
            raise InvalidTransitionError(f"Cannot complete a job that is {self.status.value}")
        self.completed_at = utcnow()
        self.completion_images = list(images or [])
        self.completion_notes = notes
        self.actual_price = actual_price if actual_price is not None else self.agreed_price
        self.status = JobStatus.COMPLETED
        self._append_entry(actor_id, notes or "Work completed", images, ProgressStage.COMPLETED)
        self._touch()

    # ---------------------------------------------------
    # Approval & Release
    # ---------------------------------------------------
    def approve_completion(self, actor_id: uuid.UUID) -> None:
        self.ensure_owner(actor_id)
        if self.customer_approved:
            raise AlreadyApproved("Job completion has already been approved")
        if self.status != JobStatus.COMPLETED:
            raise NotCompleted("Job must be completed before approval")
        self.customer_approved = True
        self.approved_at = utcnow()
        self._touch()

    def claim_payout(self, reference: str) -> None:
        """Reserve a payout reference before calling the provider."""
        if not self.customer_approved or self.status != JobStatus.COMPLETED:
            raise InvalidTransitionError("Payout requires an approved, completed job")
        if self.payment_status != PaymentStatus.ESCROW:
            raise InvalidTransitionError(
                f"Payment is {self.payment_status.value}, not held in escrow"
            )
        if self.transfer_status in (TransferStatus.PENDING, TransferStatus.SUCCESS):
            raise InvalidTransitionError("A payout is already in flight for this job")
        self.release_reference = reference
        self.transfer_status = TransferStatus.PENDING
        self.transfer_failure_reason = None
        self._touch()

    def mark_released(
        self,
        amount: int,
        transaction_id: str | None,
        reference: str,
        transfer_status: TransferStatus | None = None,
    ) -> bool:
        """Returns False when the release was already recorded."""
        if self.payment_status == PaymentStatus.RELEASED:
            return False
        if self.payment_status != PaymentStatus.ESCROW:
            raise InvalidTransitionError(
                f"Cannot release a payment that is {self.payment_status.value}"
            )
        if transfer_status is not None:
            self.transfer_status = transfer_status
            if transfer_status == TransferStatus.SUCCESS:
                self.transfer_completed_date = utcnow()
        self.release_amount = amount
        self.release_transaction_id = transaction_id
        self.release_reference = reference
        self.release_date = utcnow()
        self.payment_status = PaymentStatus.RELEASED
        self._touch()
        return True

    def mark_cash_released(self) -> None:
        if not self.customer_approved:
            raise InvalidTransitionError("Cash release requires customer approval")
        if not self.is_cash or self.payment_status != PaymentStatus.PENDING:
            raise InvalidTransitionError("Only unreleased cash jobs can be settled in cash")
        marker = self._cash_marker()
        self.release_amount = self.actual_price or self.agreed_price
        self.release_reference = marker
        self.release_transaction_id = marker
        self.release_date = utcnow()
        self.payment_status = PaymentStatus.RELEASED
        self._touch()

    def record_payout_failure(self, reason: str) -> None:
        if self.payment_status != PaymentStatus.ESCROW:
            raise InvalidTransitionError("Only escrowed payments can record a payout failure")
        self.transfer_status = TransferStatus.FAILED
        self.transfer_failure_reason = reason
        self._touch()

    # ---------------------------------------------------
    # Cancellation, Refund & Dispute
    # ---------------------------------------------------
    def cancel(self, actor_id: uuid.UUID, is_admin: bool, reason: str | None) -> bool:
        """
        Move the job to cancelled.

        Returns True when escrowed funds must now be refunded.
        """
        if not is_admin:
            self.ensure_owner(actor_id)
        allowed = ADMIN_CANCELLABLE_STATES if is_admin else OWNER_CANCELLABLE_STATES
        if self.status not in allowed:
            raise InvalidTransitionError(f"Cannot cancel a job that is {self.status.value}")

        self.status = JobStatus.CANCELLED
        self.cancelled_at = utcnow()
        self.cancel_reason = reason
        self.cancelled_by = actor_id
        for proposal in self.proposals:
            if proposal.status == ProposalStatus.PENDING:
                proposal.status = ProposalStatus.REJECTED

        needs_refund = self.payment_status == PaymentStatus.ESCROW
        if needs_refund:
            self.refund_status = RefundStatus.PENDING
            self.refund_reason = reason
        self._touch()
        return needs_refund

    def mark_refunded(self, refund_reference: str | None, amount: int) -> None:
        if self.status != JobStatus.CANCELLED or self.payment_status != PaymentStatus.ESCROW:
            raise InvalidTransitionError("Only escrowed payments on cancelled jobs can be refunded")
        self.refund_reference = refund_reference
        self.refund_amount = amount
        self.refund_date = utcnow()
        self.refund_status = RefundStatus.PROCESSED
        self.payment_status = PaymentStatus.REFUNDED
        self._touch()

    def record_refund_failure(self, reason: str) -> None:
        self.refund_status = RefundStatus.FAILED
        self.flag_reconciliation(f"Refund failed: {reason}")

    def raise_dispute(self, actor_id: uuid.UUID, reason: str) -> None:
        if not self.is_participant(actor_id):
            raise NotAJobParticipant("Only the job owner or assigned fundi can dispute this job")
        if self.status != JobStatus.COMPLETED or self.customer_approved:
            raise InvalidTransitionError("Only completed, unapproved jobs can be disputed")
        self.status = JobStatus.DISPUTED
        self.disputed_at = utcnow()
        self.dispute_reason = reason
        self._touch()

    # ---------------------------------------------------
    # Reconciliation Flag
    # ---------------------------------------------------
    def flag_reconciliation(self, note: str) -> None:
        stamped = f"[{utcnow().isoformat()}] {note}"
        self.reconciliation_required = True
        self.reconciliation_note = (
            f"{self.reconciliation_note}\n{stamped}" if self.reconciliation_note else stamped
        )
        self._touch()

    def clear_reconciliation(self, note: str) -> None:
        stamped = f"[{utcnow().isoformat()}] resolved: {note}"
        self.reconciliation_required = False
        self.reconciliation_note = (
            f"{self.reconciliation_note}\n{stamped}" if self.reconciliation_note else stamped
        )
        self._touch()

    # ---------------------------------------------------
    # Provider Transfer Confirmation
    # ---------------------------------------------------
    def record_transfer_outcome(self, status: TransferStatus, reason: str | None = None) -> None:
        """Record what the provider reported for the claimed payout; never touches payment_status."""
        self.transfer_status = status
        if status == TransferStatus.SUCCESS:
            self.transfer_completed_date = utcnow()
        elif reason:
            self.transfer_failure_reason = reason
        self._touch()
