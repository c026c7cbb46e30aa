"""
app/database/enums.py

Enumerations

Defines enumerations used across the platform:
- UserRole: Roles assigned to users (Customer, Fundi, Admin)
- JobStatus: Lifecycle states of a job
- JobUrgency: Customer-declared urgency of a job
- PaymentMethod / PaymentStatus: Escrow payment record values
- ProposalStatus: State of a fundi's bid
- ProgressStage: Stage tag on work progress entries
- TransferStatus / RefundStatus: Provider-side payout and refund states
"""

from enum import Enum

# ---------------------------------------------------
# User Role Enumeration
# ---------------------------------------------------


class UserRole(str, Enum):
    """
    Enum representing user roles for access control.

    Values:
    - CUSTOMER
    - FUNDI
    - ADMIN
    """

    CUSTOMER = "CUSTOMER"
    FUNDI = "FUNDI"
    ADMIN = "ADMIN"


# ---------------------------------------------------
# Job Enumerations
# ---------------------------------------------------


class JobStatus(str, Enum):
    POSTED = "posted"
    APPLIED = "applied"
    PENDING_PAYMENT_ESCROW = "pending_payment_escrow"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class JobUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProgressStage(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ---------------------------------------------------
# Payment Enumerations
# ---------------------------------------------------


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    CASH = "cash"


class PaymentStatus(str, Enum):
    """
    Enum representing the escrow payment record state.

    Values:
    - PENDING: nothing collected yet
    - ESCROW: funds held by the platform
    - RELEASED: paid out to the fundi
    - REFUNDED: returned to the customer
    - FAILED: charge failed at the provider
    """

    PENDING = "pending"
    ESCROW = "escrow"
    RELEASED = "released"
    REFUNDED = "refunded"
    FAILED = "failed"


class TransferStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REVERSED = "reversed"


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
