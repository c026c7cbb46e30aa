# tests/job/test_job_routes.py
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi import status
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConcurrencyConflictError, NotJobOwner, ProviderRejected
from app.database.enums import JobStatus, PaymentStatus
from app.database.models import User
from app.job import schemas as job_schemas
from app.job import services as job_services
from tests.helpers import FakeGateway, RecordingNotifier, job_payload, make_job


def job_create_payload(**overrides) -> dict:
    payload = {
        "title": "Fix kitchen sink",
        "description": "Leaking pipe under the kitchen sink needs replacing.",
        "category": "plumbing",
        "budget_min": 1000,
        "budget_max": 2000,
        "city": "Nairobi",
    }
    payload.update(overrides)
    return payload


# --- Posting ---


@pytest.mark.asyncio
@patch.object(job_services.JobService, "create_job", new_callable=AsyncMock)
async def test_create_job_success(
    mock_create_job: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_create_job.return_value = make_job(mock_current_customer_user.id)

    response = await async_client.post("/jobs", json=job_create_payload())

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["customer_id"] == str(mock_current_customer_user.id)
    assert data["status"] == JobStatus.POSTED.value
    assert data["payment"]["status"] == PaymentStatus.PENDING.value
    assert data["payment"]["method"] == "mpesa"
    mock_create_job.assert_awaited_once_with(
        mock_current_customer_user.id, job_schemas.JobCreate(**job_create_payload())
    )


@pytest.mark.asyncio
@patch.object(job_services.JobService, "create_job", new_callable=AsyncMock)
async def test_create_job_rejected_for_fundi(
    mock_create_job: AsyncMock,
    mock_current_fundi_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    response = await async_client.post("/jobs", json=job_create_payload())

    assert response.status_code == status.HTTP_403_FORBIDDEN
    mock_create_job.assert_not_awaited()


@pytest.mark.asyncio
async def test_create_job_inverted_budget_is_422(
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    response = await async_client.post(
        "/jobs", json=job_create_payload(budget_min=3000, budget_max=2000)
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_create_job_requires_authentication(
    async_client: AsyncClient, override_get_db: None, override_collaborators: None
) -> None:
    response = await async_client.post("/jobs", json=job_create_payload())
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_update_job_rejects_lifecycle_fields(
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    response = await async_client.put(f"/jobs/{uuid4()}", json={"status": "completed"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"title": None}, {"budget_min": None}])
async def test_update_job_null_required_field_is_400(
    body: dict,
    db_session: AsyncSession,
    db_users: dict[str, User],
    fake_gateway: FakeGateway,
    notifier: RecordingNotifier,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db_with_session: None,
    override_collaborators: None,
) -> None:
    job = await job_services.JobService(db_session, fake_gateway, notifier).create_job(
        db_users["customer"].id, job_payload()
    )

    response = await async_client.put(f"/jobs/{job.id}", json=body)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error"] == "VALIDATION_ERROR"
    assert response.json()["details"]["fields"] == list(body)


@pytest.mark.asyncio
@patch.object(job_services.JobService, "update_job", new_callable=AsyncMock)
async def test_update_job_by_non_owner_is_403(
    mock_update_job: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_update_job.side_effect = NotJobOwner("Only the job owner can perform this action")

    response = await async_client.put(f"/jobs/{uuid4()}", json={"title": "New title"})

    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["error"] == "NOT_JOB_OWNER"


@pytest.mark.asyncio
@patch.object(job_services.JobService, "delete_job", new_callable=AsyncMock)
async def test_delete_job_returns_message(
    mock_delete_job: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    job_id = uuid4()
    mock_delete_job.return_value = "Job deleted successfully"

    response = await async_client.delete(f"/jobs/{job_id}")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"detail": "Job deleted successfully"}
    mock_delete_job.assert_awaited_once_with(mock_current_customer_user, job_id)


# --- Listing ---


@pytest.mark.asyncio
@patch.object(job_services.JobService, "list_open_jobs", new_callable=AsyncMock)
async def test_list_open_jobs_passes_filters(
    mock_list: AsyncMock,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_list.return_value = ([make_job(uuid4())], 3)

    response = await async_client.get(
        "/jobs", params={"status": "applied", "city": "Nairobi", "skip": 0, "limit": 1}
    )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["total_count"] == 3
    assert data["has_next_page"] is True
    assert len(data["items"]) == 1
    filters = mock_list.await_args.args[0]
    assert filters.status == JobStatus.APPLIED
    assert filters.city == "Nairobi"


@pytest.mark.asyncio
@patch.object(job_services.JobService, "proposal_stats", new_callable=AsyncMock)
async def test_proposal_stats_for_fundi(
    mock_stats: AsyncMock,
    mock_current_fundi_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_stats.return_value = job_schemas.ProposalStats(total=3, pending=1, accepted=1, rejected=1)

    response = await async_client.get("/jobs/fundi/proposals/stats")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"total": 3, "pending": 1, "accepted": 1, "rejected": 1}
    mock_stats.assert_awaited_once_with(mock_current_fundi_user.id)


# --- Bidding & Acceptance ---


@pytest.mark.asyncio
@patch.object(job_services.JobService, "submit_proposal", new_callable=AsyncMock)
async def test_submit_proposal_success(
    mock_submit: AsyncMock,
    mock_current_fundi_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    job = make_job(uuid4())
    mock_submit.return_value = job.add_proposal(mock_current_fundi_user.id, 1500, 4, "Available today")

    response = await async_client.post(
        f"/jobs/{job.id}/submit-proposal",
        json={"proposed_price": 1500, "estimated_duration": 4, "proposal": "Available today"},
    )

    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["fundi_id"] == str(mock_current_fundi_user.id)
    assert data["status"] == "pending"


@pytest.mark.asyncio
@patch.object(job_services.JobService, "accept_proposal", new_callable=AsyncMock)
async def test_accept_proposal_returns_checkout(
    mock_accept: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    fundi_id = uuid4()
    job = make_job(mock_current_customer_user.id)
    job.add_proposal(fundi_id, 1500, None, None)
    job.accept_proposal(fundi_id)
    job.attach_charge("JOB_ref", "AC_ref", "https://checkout.test/JOB_ref", "fake")
    mock_accept.return_value = job

    response = await async_client.patch(f"/jobs/{job.id}/proposals/{fundi_id}/accept")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == JobStatus.PENDING_PAYMENT_ESCROW.value
    assert data["agreed_price"] == 1500
    assert data["payment"]["authorization_url"] == "https://checkout.test/JOB_ref"
    assert data["proposals"][0]["status"] == "accepted"
    mock_accept.assert_awaited_once_with(mock_current_customer_user, job.id, fundi_id)


@pytest.mark.asyncio
@patch.object(job_services.JobService, "accept_proposal", new_callable=AsyncMock)
async def test_accept_proposal_conflict_is_409(
    mock_accept: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_accept.side_effect = ConcurrencyConflictError("Job was modified concurrently; re-fetch and retry")

    response = await async_client.patch(f"/jobs/{uuid4()}/proposals/{uuid4()}/accept")

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["error"] == "CONCURRENCY_CONFLICT"


# --- Work & Approval ---


@pytest.mark.asyncio
@patch.object(job_services.JobService, "start_job", new_callable=AsyncMock)
async def test_start_job_rejected_for_customer(
    mock_start: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    response = await async_client.patch(f"/jobs/{uuid4()}/start")

    assert response.status_code == status.HTTP_403_FORBIDDEN
    mock_start.assert_not_awaited()


@pytest.mark.asyncio
@patch.object(job_services.JobService, "complete_job", new_callable=AsyncMock)
async def test_complete_job_passes_actual_price(
    mock_complete: AsyncMock,
    mock_current_fundi_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    job = make_job(uuid4())
    mock_complete.return_value = job

    response = await async_client.patch(
        f"/jobs/{job.id}/complete", json={"completion_notes": "All done", "actual_price": 1400}
    )

    assert response.status_code == status.HTTP_200_OK
    payload = mock_complete.await_args.args[2]
    assert payload.actual_price == 1400
    assert payload.completion_notes == "All done"


@pytest.mark.asyncio
@patch.object(job_services.JobService, "approve_completion", new_callable=AsyncMock)
async def test_approve_surfaces_payout_rejection(
    mock_approve: AsyncMock,
    mock_current_customer_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    mock_approve.side_effect = ProviderRejected("Recipient account closed")

    response = await async_client.patch(f"/jobs/{uuid4()}/approve")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    body = response.json()
    assert body["error"] == "PROVIDER_REJECTED"
    assert body["message"] == "Recipient account closed"
    assert body["details"]["retryable"] is False


@pytest.mark.asyncio
@patch.object(job_services.JobService, "cancel_job", new_callable=AsyncMock)
async def test_admin_cancel_passes_reason(
    mock_cancel: AsyncMock,
    mock_current_admin_user: User,
    async_client: AsyncClient,
    override_get_db: None,
    override_collaborators: None,
) -> None:
    job = make_job(uuid4())
    job.cancel(mock_current_admin_user.id, True, "Resolved for customer")
    mock_cancel.return_value = job

    response = await async_client.patch(
        f"/jobs/{job.id}/cancel", json={"cancel_reason": "Resolved for customer"}
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == JobStatus.CANCELLED.value
    mock_cancel.assert_awaited_once_with(mock_current_admin_user, job.id, "Resolved for customer")
