"""
app/payment/routes.py

Payment Routes
Defines escrow and payment API endpoints:
- Re-open escrow checkout (Job Owner)
- Verify an escrow charge (Job Owner / Admin)
- Retry a payout, cancel and refund (Job Owner / Admin)
- Provider webhook (Public, signature-verified)
- Reconciliation queue (Admin)
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import get_redis
from app.core.config import settings
from app.core.dependencies import (
    PaginationParams,
    get_current_user_with_role,
    get_notifier,
    get_payment_gateway,
    require_roles,
)
from app.core.limiter import limiter
from app.core.schemas import PaginatedResponse
from app.database.enums import UserRole
from app.database.models import User
from app.database.session import get_db
from app.notification.services import NotificationService
from app.payment import schemas
from app.payment.gateway import PaymentGateway
from app.payment.services import PaymentService
from app.payment.webhooks import SIGNATURE_HEADER, WebhookHandler

router = APIRouter(prefix="/payments", tags=["Payments"])

DBDep = Annotated[AsyncSession, Depends(get_db)]
GatewayDep = Annotated[PaymentGateway, Depends(get_payment_gateway)]
NotifierDep = Annotated[NotificationService, Depends(get_notifier)]

AuthenticatedCustomerDep = Annotated[User, Depends(get_current_user_with_role(UserRole.CUSTOMER))]
OwnerOrAdminDep = Annotated[User, Depends(require_roles(UserRole.CUSTOMER, UserRole.ADMIN))]
ParticipantOrAdminDep = Annotated[
    User, Depends(require_roles(UserRole.CUSTOMER, UserRole.FUNDI, UserRole.ADMIN))
]
AdminDep = Annotated[User, Depends(get_current_user_with_role(UserRole.ADMIN))]


# ---------------------------------------------------
# Escrow Endpoints
# ---------------------------------------------------


@router.post(
    "/escrow/{job_id}",
    response_model=schemas.PaymentRecordRead,
    status_code=status.HTTP_200_OK,
    summary="Initiate Escrow Payment",
    description="Owner (re)opens the escrow checkout for a job awaiting payment.",
)
@limiter.limit("5/minute")
async def initiate_escrow(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedCustomerDep,
) -> schemas.PaymentRecordRead:
    job = await PaymentService(db, gateway, notifier).reinitiate_escrow(current_user, job_id)
    return schemas.PaymentRecordRead.model_validate(job)


@router.post(
    "/verify/{job_id}",
    response_model=schemas.PaymentRecordRead,
    status_code=status.HTTP_200_OK,
    summary="Verify Escrow Payment",
    description="Checks the escrow charge with the provider and records it if paid.",
)
@limiter.limit("10/minute")
async def verify_escrow(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: ParticipantOrAdminDep,
) -> schemas.PaymentRecordRead:
    job = await PaymentService(db, gateway, notifier).verify_escrow(current_user, job_id)
    return schemas.PaymentRecordRead.model_validate(job)


# ---------------------------------------------------
# Release & Refund Endpoints
# ---------------------------------------------------


@router.post(
    "/release/{job_id}",
    response_model=schemas.PaymentRecordRead,
    status_code=status.HTTP_200_OK,
    summary="Retry Payout",
    description="Retries the payout of an approved job whose earlier payout failed or is unresolved.",
)
@limiter.limit("5/minute")
async def retry_payout(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: OwnerOrAdminDep,
) -> schemas.PaymentRecordRead:
    job = await PaymentService(db, gateway, notifier).retry_payout(current_user, job_id)
    return schemas.PaymentRecordRead.model_validate(job)


@router.post(
    "/refund/{job_id}",
    response_model=schemas.PaymentRecordRead,
    status_code=status.HTTP_200_OK,
    summary="Cancel and Refund",
    description="Cancels the job and refunds escrowed funds; retries a failed refund.",
)
@limiter.limit("5/minute")
async def refund(
    request: Request,
    job_id: UUID,
    payload: schemas.RefundRequest,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: OwnerOrAdminDep,
) -> schemas.PaymentRecordRead:
    job = await PaymentService(db, gateway, notifier).cancel_and_refund(
        current_user, job_id, payload.reason
    )
    return schemas.PaymentRecordRead.model_validate(job)


# ---------------------------------------------------
# Provider Webhook (signature-verified, not rate limited)
# ---------------------------------------------------


@router.post(
    "/webhook",
    response_model=schemas.WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Payment Provider Webhook",
    include_in_schema=False,
)
async def payment_webhook(
    request: Request,
    db: DBDep,
    notifier: NotifierDep,
) -> schemas.WebhookAck:
    raw_body = await request.body()
    handler = WebhookHandler(db, settings.webhook_secret, get_redis(), notifier)
    outcome = await handler.handle(raw_body, request.headers.get(SIGNATURE_HEADER))
    return schemas.WebhookAck(outcome=outcome)


# ---------------------------------------------------
# Reconciliation Queue (Admin)
# ---------------------------------------------------


@router.get(
    "/reconciliation",
    response_model=PaginatedResponse[schemas.ReconciliationEntry],
    status_code=status.HTTP_200_OK,
    summary="List Jobs Needing Reconciliation",
)
@limiter.limit("30/minute")
async def list_reconciliation_queue(
    request: Request,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AdminDep,
    pagination: PaginationParams = Depends(),
) -> PaginatedResponse[schemas.ReconciliationEntry]:
    jobs, total_count = await PaymentService(db, gateway, notifier).list_reconciliation_queue(
        skip=pagination.skip, limit=pagination.limit
    )
    return PaginatedResponse[schemas.ReconciliationEntry].page(
        [schemas.ReconciliationEntry.model_validate(j) for j in jobs],
        total_count,
        pagination.skip,
        pagination.limit,
    )


@router.post(
    "/reconciliation/{job_id}/resolve",
    response_model=schemas.ReconciliationEntry,
    status_code=status.HTTP_200_OK,
    summary="Resolve Reconciliation Flag",
)
@limiter.limit("10/minute")
async def resolve_reconciliation(
    request: Request,
    job_id: UUID,
    payload: schemas.ResolveReconciliationRequest,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AdminDep,
) -> schemas.ReconciliationEntry:
    job = await PaymentService(db, gateway, notifier).resolve_reconciliation(
        current_user, job_id, payload.note
    )
    return schemas.ReconciliationEntry.model_validate(job)
