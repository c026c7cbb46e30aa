"""
core/exceptions.py

Description:
Defines the error taxonomy and the standard error response format for the API.
Every error carries a stable machine-readable `kind` plus a human message and
renders as {"error": kind, "message": message, "details": {...}}.
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(HTTPException):
    """Custom exception with standardized error response."""

    kind: str = "APP_ERROR"
    default_status: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(
            status_code=status_code or self.default_status,
            detail={"error": self.kind, "message": message, "details": self.details},
            headers=headers,
        )

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


# ---------------------------------------------------
# Base Taxonomy
# ---------------------------------------------------
class ValidationError(AppError):
    kind = "VALIDATION_ERROR"


class Unauthorized(AppError):
    kind = "UNAUTHORIZED"
    default_status = status.HTTP_401_UNAUTHORIZED


class AuthorizationError(AppError):
    kind = "FORBIDDEN"
    default_status = status.HTTP_403_FORBIDDEN


class NotFoundError(AppError):
    kind = "NOT_FOUND"
    default_status = status.HTTP_404_NOT_FOUND


class InvalidTransitionError(AppError):
    kind = "INVALID_TRANSITION"


class ConcurrencyConflictError(AppError):
    """Optimistic-lock loss; the caller should re-fetch and retry."""

    kind = "CONCURRENCY_CONFLICT"
    default_status = status.HTTP_409_CONFLICT


class ReconciliationRequired(AppError):
    """Ambiguous financial state flagged for manual review. Logged, never shown to end users."""

    kind = "RECONCILIATION_REQUIRED"
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR


# ---------------------------------------------------
# Payment Provider Errors
# ---------------------------------------------------
class ProviderError(AppError):
    """
    Payment gateway failure.

    `retryable` tells the caller a fresh attempt is safe.
    `outcome_unknown` means the provider may have acted; only verification may resolve it.
    """

    kind = "PROVIDER_ERROR"
    default_status = status.HTTP_502_BAD_GATEWAY
    retryable: bool = False
    outcome_unknown: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
        outcome_unknown: bool | None = None,
    ):
        if retryable is not None:
            self.retryable = retryable
        if outcome_unknown is not None:
            self.outcome_unknown = outcome_unknown
        merged = {"retryable": self.retryable, "outcome_unknown": self.outcome_unknown}
        merged.update(details or {})
        super().__init__(message, status_code=status_code, details=merged)


class ProviderUnavailable(ProviderError):
    kind = "PROVIDER_UNAVAILABLE"
    retryable = True


class ProviderTimeout(ProviderError):
    kind = "PROVIDER_TIMEOUT"
    outcome_unknown = True


class ProviderRejected(ProviderError):
    kind = "PROVIDER_REJECTED"
    default_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, **kwargs: Any):
        self.reason = reason
        super().__init__(reason, **kwargs)


class InsufficientPlatformBalance(ProviderError):
    kind = "INSUFFICIENT_PLATFORM_BALANCE"
    retryable = True


class InvalidPayerContact(ProviderError):
    kind = "INVALID_PAYER_CONTACT"
    default_status = status.HTTP_400_BAD_REQUEST


# ---------------------------------------------------
# Job Aggregate Errors
# ---------------------------------------------------
class DuplicateProposal(ValidationError):
    kind = "DUPLICATE_PROPOSAL"


class JobNotAcceptingProposals(InvalidTransitionError):
    kind = "JOB_NOT_ACCEPTING_PROPOSALS"


class ProposalNotFound(NotFoundError):
    kind = "PROPOSAL_NOT_FOUND"


class NotAwaitingEscrow(InvalidTransitionError):
    kind = "NOT_AWAITING_ESCROW"


class NotCompleted(InvalidTransitionError):
    kind = "NOT_COMPLETED"


class AlreadyApproved(InvalidTransitionError):
    kind = "ALREADY_APPROVED"


class NotAssignedFundi(AuthorizationError):
    kind = "NOT_ASSIGNED_FUNDI"


class NotAJobParticipant(AuthorizationError):
    kind = "NOT_A_JOB_PARTICIPANT"


class NotJobOwner(AuthorizationError):
    kind = "NOT_JOB_OWNER"


# ---------------------------------------------------
# Handler Registration
# ---------------------------------------------------
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[ERROR] {request.method} {request.url.path} -> {exc}")
    else:
        logger.info(f"[ERROR] {request.method} {request.url.path} -> {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.message, "details": exc.details},
        headers=exc.headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the structured AppError renderer to the application."""
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
