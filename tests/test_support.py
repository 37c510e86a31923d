"""Support tickets reported by job participants."""
import pytest
from sqlalchemy import select

from app.models import AuditLog, SupportTicket, UserRole


@pytest.mark.anyio
async def test_participant_reports_problem(client, db_session, customer, handyman, make_job, handyman_headers):
    job = make_job(customer, handyman)

    response = await client.post(
        "/support/tickets",
        json={"job_id": job.id, "problem_type": "access", "description": "Nobody home", "priority": "high"},
        headers=handyman_headers,
    )

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["status"] == "open"
    assert body["reported_by"] == handyman.id
    assert body["priority"] == "high"
    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "TICKET_OPENED", AuditLog.entity_id == body["id"])
    ).one()
    assert audit.data_json["problem_type"] == "access"


@pytest.mark.anyio
async def test_outsider_cannot_report(client, customer, handyman, make_user, make_job, headers_for):
    job = make_job(customer, handyman)
    outsider = make_user(UserRole.customer)

    response = await client.post(
        "/support/tickets",
        json={"job_id": job.id, "problem_type": "other", "description": "Hello"},
        headers=headers_for(outsider),
    )

    assert response.status_code == 403


@pytest.mark.anyio
async def test_unknown_priority_rejected(client, customer, handyman, make_job, customer_headers):
    job = make_job(customer, handyman)

    response = await client.post(
        "/support/tickets",
        json={"job_id": job.id, "problem_type": "other", "description": "Hello", "priority": "whenever"},
        headers=customer_headers,
    )

    assert response.status_code == 422


@pytest.mark.anyio
async def test_ticket_for_unknown_job(client, customer_headers):
    response = await client.post(
        "/support/tickets",
        json={"job_id": 999999, "problem_type": "other", "description": "Hello"},
        headers=customer_headers,
    )
    assert response.status_code == 404


@pytest.mark.anyio
async def test_admin_lists_tickets(client, db_session, customer, handyman, make_job, customer_headers, admin_headers):
    job = make_job(customer, handyman)
    await client.post(
        "/support/tickets",
        json={"job_id": job.id, "problem_type": "late", "description": "Two hours late"},
        headers=customer_headers,
    )

    response = await client.get("/admin/tickets", headers=admin_headers)

    assert response.status_code == 200
    ids = {item["job_id"] for item in response.json()}
    assert job.id in ids
    assert db_session.scalars(select(SupportTicket).where(SupportTicket.job_id == job.id)).one()
