"""
app/job/routes.py

Job Routes
Defines job-related API endpoints for customers and fundis:
- Post, edit, delete a job (Authenticated Customer)
- Browse open jobs (Public)
- Submit a proposal, list own proposals (Authenticated Fundi)
- Accept a proposal, approve completion, cancel (Job Owner)
- Start, progress, complete work (Assigned Fundi)
- Dispute a completed job (Job Participant)
"""

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import (
    PaginationParams,
    get_current_user,
    get_current_user_with_role,
    get_notifier,
    get_payment_gateway,
    require_roles,
)
from app.core.limiter import limiter
from app.core.schemas import MessageResponse, PaginatedResponse
from app.database.enums import JobStatus, JobUrgency, UserRole
from app.database.models import User
from app.database.session import get_db
from app.job import schemas
from app.job.services import JobService
from app.notification.services import NotificationService
from app.payment.gateway import PaymentGateway

router = APIRouter(prefix="/jobs", tags=["Jobs"])

DBDep = Annotated[AsyncSession, Depends(get_db)]
GatewayDep = Annotated[PaymentGateway, Depends(get_payment_gateway)]
NotifierDep = Annotated[NotificationService, Depends(get_notifier)]

AuthenticatedUserDep = Annotated[User, Depends(get_current_user)]
AuthenticatedCustomerDep = Annotated[User, Depends(get_current_user_with_role(UserRole.CUSTOMER))]
AuthenticatedFundiDep = Annotated[User, Depends(get_current_user_with_role(UserRole.FUNDI))]
OwnerOrAdminDep = Annotated[User, Depends(require_roles(UserRole.CUSTOMER, UserRole.ADMIN))]


# ---------------------------------------------------
# Customer Endpoints (Post, Edit, Delete Job)
# ---------------------------------------------------


@router.post(
    "",
    response_model=schemas.JobRead,
    status_code=status.HTTP_201_CREATED,
    summary="Post Job",
    description="Customer posts a new job open for proposals. Requires Customer role.",
)
@limiter.limit("10/minute")
async def create_job(
    request: Request,
    payload: schemas.JobCreate,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedCustomerDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).create_job(current_user.id, payload)
    return schemas.JobRead.model_validate(job)


@router.put(
    "/{job_id}",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Update Job",
    description="Owner edits a job while it is still posted.",
)
@limiter.limit("10/minute")
async def update_job(
    request: Request,
    job_id: UUID,
    payload: schemas.JobUpdate,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedCustomerDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).update_job(current_user, job_id, payload)
    return schemas.JobRead.model_validate(job)


@router.delete(
    "/{job_id}",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete Job",
    description="Deletes a posted job; jobs past posting are cancelled (and refunded) instead.",
)
@limiter.limit("5/minute")
async def delete_job(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: OwnerOrAdminDep,
) -> MessageResponse:
    detail = await JobService(db, gateway, notifier).delete_job(current_user, job_id)
    return MessageResponse(detail=detail)


# ---------------------------------------------------
# Public & Listing Endpoints
# ---------------------------------------------------


@router.get(
    "",
    response_model=PaginatedResponse[schemas.JobRead],
    status_code=status.HTTP_200_OK,
    summary="Browse Jobs",
    description="Lists jobs still accepting proposals, with optional filters.",
)
@limiter.limit("30/minute")
async def list_open_jobs(
    request: Request,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    pagination: PaginationParams = Depends(),
    job_status: JobStatus | None = Query(None, alias="status"),
    category: str | None = Query(None),
    urgency: JobUrgency | None = Query(None),
    city: str | None = Query(None),
    county: str | None = Query(None),
) -> PaginatedResponse[schemas.JobRead]:
    filters = schemas.JobFilters(
        status=job_status, category=category, urgency=urgency, city=city, county=county
    )
    jobs, total_count = await JobService(db, gateway, notifier).list_open_jobs(
        filters, skip=pagination.skip, limit=pagination.limit
    )
    return PaginatedResponse[schemas.JobRead].page(
        [schemas.JobRead.model_validate(j) for j in jobs], total_count, pagination.skip, pagination.limit
    )


@router.get(
    "/me",
    response_model=PaginatedResponse[schemas.JobRead],
    status_code=status.HTTP_200_OK,
    summary="List My Jobs",
    description="Jobs the authenticated user posted, bid on, or is assigned to.",
)
@limiter.limit("30/minute")
async def list_my_jobs(
    request: Request,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedUserDep,
    pagination: PaginationParams = Depends(),
    role: Literal["customer", "fundi"] | None = Query(None),
    job_status: JobStatus | None = Query(None, alias="status"),
) -> PaginatedResponse[schemas.JobRead]:
    filters = schemas.MyJobFilters(role=role, status=job_status)
    jobs, total_count = await JobService(db, gateway, notifier).list_jobs_for_user(
        current_user, filters, skip=pagination.skip, limit=pagination.limit
    )
    return PaginatedResponse[schemas.JobRead].page(
        [schemas.JobRead.model_validate(j) for j in jobs], total_count, pagination.skip, pagination.limit
    )


@router.get(
    "/fundi/proposals",
    response_model=PaginatedResponse[schemas.FundiProposalRead],
    status_code=status.HTTP_200_OK,
    summary="List My Proposals",
    description="Proposals the authenticated fundi has submitted. Requires Fundi role.",
)
@limiter.limit("30/minute")
async def list_fundi_proposals(
    request: Request,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedFundiDep,
    pagination: PaginationParams = Depends(),
) -> PaginatedResponse[schemas.FundiProposalRead]:
    items, total_count = await JobService(db, gateway, notifier).list_fundi_proposals(
        current_user.id, skip=pagination.skip, limit=pagination.limit
    )
    return PaginatedResponse[schemas.FundiProposalRead].page(
        items, total_count, pagination.skip, pagination.limit
    )


@router.get(
    "/fundi/proposals/stats",
    response_model=schemas.ProposalStats,
    status_code=status.HTTP_200_OK,
    summary="Proposal Stats",
    description="Counts of the authenticated fundi's proposals by status.",
)
@limiter.limit("30/minute")
async def proposal_stats(
    request: Request,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedFundiDep,
) -> schemas.ProposalStats:
    return await JobService(db, gateway, notifier).proposal_stats(current_user.id)


@router.get(
    "/{job_id}",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Get Job Detail",
    description="Full detail of a job including proposals, progress and payment record.",
)
@limiter.limit("30/minute")
async def get_job_detail(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).get_job_detail(job_id)
    return schemas.JobRead.model_validate(job)


# ---------------------------------------------------
# Bidding Endpoints
# ---------------------------------------------------


@router.post(
    "/{job_id}/submit-proposal",
    response_model=schemas.ProposalRead,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Proposal",
    description="Fundi bids on an open job. One proposal per fundi per job.",
)
@limiter.limit("10/minute")
async def submit_proposal(
    request: Request,
    job_id: UUID,
    payload: schemas.ProposalCreate,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedFundiDep,
) -> schemas.ProposalRead:
    proposal = await JobService(db, gateway, notifier).submit_proposal(current_user, job_id, payload)
    return schemas.ProposalRead.model_validate(proposal)


@router.patch(
    "/{job_id}/proposals/{fundi_id}/accept",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Accept Proposal",
    description="Owner accepts a fundi's proposal. Non-cash jobs then open an escrow charge.",
)
@limiter.limit("5/minute")
async def accept_proposal(
    request: Request,
    job_id: UUID,
    fundi_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedCustomerDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).accept_proposal(current_user, job_id, fundi_id)
    return schemas.JobRead.model_validate(job)


# ---------------------------------------------------
# Work Execution Endpoints (Assigned Fundi / Participants)
# ---------------------------------------------------


@router.patch(
    "/{job_id}/start",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Start Job",
)
@limiter.limit("5/minute")
async def start_job(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedFundiDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).start_job(current_user, job_id)
    return schemas.JobRead.model_validate(job)


@router.post(
    "/{job_id}/progress",
    response_model=schemas.JobRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Progress Update",
)
@limiter.limit("20/minute")
async def add_progress(
    request: Request,
    job_id: UUID,
    payload: schemas.ProgressCreate,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedUserDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).add_progress(current_user, job_id, payload)
    return schemas.JobRead.model_validate(job)


@router.patch(
    "/{job_id}/complete",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Complete Job",
)
@limiter.limit("5/minute")
async def complete_job(
    request: Request,
    job_id: UUID,
    payload: schemas.JobComplete,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedFundiDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).complete_job(current_user, job_id, payload)
    return schemas.JobRead.model_validate(job)


# ---------------------------------------------------
# Approval, Dispute & Cancellation Endpoints
# ---------------------------------------------------


@router.patch(
    "/{job_id}/approve",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Approve Completion",
    description="Owner approves completed work; escrowed funds are released to the fundi.",
)
@limiter.limit("5/minute")
async def approve_completion(
    request: Request,
    job_id: UUID,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedCustomerDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).approve_completion(current_user, job_id)
    return schemas.JobRead.model_validate(job)


@router.patch(
    "/{job_id}/dispute",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Dispute Job",
)
@limiter.limit("5/minute")
async def raise_dispute(
    request: Request,
    job_id: UUID,
    payload: schemas.DisputeRequest,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: AuthenticatedUserDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).raise_dispute(current_user, job_id, payload.reason)
    return schemas.JobRead.model_validate(job)


@router.patch(
    "/{job_id}/cancel",
    response_model=schemas.JobRead,
    status_code=status.HTTP_200_OK,
    summary="Cancel Job",
    description="Owner or admin cancels a job; escrowed funds are refunded.",
)
@limiter.limit("5/minute")
async def cancel_job(
    request: Request,
    job_id: UUID,
    payload: schemas.CancelJobRequest,
    db: DBDep,
    gateway: GatewayDep,
    notifier: NotifierDep,
    current_user: OwnerOrAdminDep,
) -> schemas.JobRead:
    job = await JobService(db, gateway, notifier).cancel_job(
        current_user, job_id, payload.cancel_reason
    )
    return schemas.JobRead.model_validate(job)
