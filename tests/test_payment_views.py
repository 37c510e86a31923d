"""Payment status, history and escrow alert views."""
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.models import Job, JobStatus, PaymentStatus, UserRole


async def _status(client, headers, job_id):
    return await client.get("/payments/status", params={"job_id": job_id}, headers=headers)


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("job_status", "payment_status", "expected"),
    [
        (JobStatus.ACCEPTED, None, "create_payment"),
        (JobStatus.ACCEPTED, PaymentStatus.FAILED, "create_payment"),
        (JobStatus.ACCEPTED, PaymentStatus.PENDING, "complete_payment"),
        (JobStatus.ACCEPTED, PaymentStatus.ESCROWED, None),
        (JobStatus.COMPLETED, PaymentStatus.ESCROWED, "release_payment"),
        (JobStatus.COMPLETED, PaymentStatus.RELEASED, None),
    ],
)
async def test_customer_next_action(
    client, customer, handyman, make_job, make_payment, customer_headers, job_status, payment_status, expected
):
    job = make_job(customer, handyman, status=job_status)
    if payment_status is not None:
        make_payment(job, payment_status)

    response = await _status(client, customer_headers, job.id)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["user_role"] == "customer"
    assert body["next_action"] == expected
    assert body["can_take_action"] is (expected is not None)


@pytest.mark.anyio
async def test_handyman_waits_for_release(client, customer, handyman, make_job, make_payment, handyman_headers):
    job = make_job(customer, handyman, status=JobStatus.COMPLETED)
    make_payment(job, PaymentStatus.ESCROWED)

    body = (await _status(client, handyman_headers, job.id)).json()

    assert body["user_role"] == "handyman"
    assert body["next_action"] == "waiting_for_release"
    assert body["can_take_action"] is False
    # the intent id stays with the paying customer
    assert body["payment"]["payment_intent_id"] is None


@pytest.mark.anyio
async def test_handyman_told_to_onboard(client, customer, make_user, make_job, headers_for):
    newcomer = make_user(UserRole.handyman)
    job = make_job(customer, newcomer)

    body = (await _status(client, headers_for(newcomer), job.id)).json()

    assert body["next_action"] == "complete_onboarding"
    assert body["handyman_onboarding_complete"] is False
    assert body["payment"] is None


@pytest.mark.anyio
async def test_status_shows_amounts_to_customer(client, customer, handyman, make_job, make_payment, customer_headers):
    job = make_job(customer, handyman)
    payment = make_payment(job, PaymentStatus.PENDING)

    body = (await _status(client, customer_headers, job.id)).json()

    assert body["payment"]["amounts"]["total_charged"] == 10800
    assert Decimal(body["payment"]["amounts"]["display"]["handyman_payout"]) == Decimal("95.00")
    assert body["payment"]["payment_intent_id"] == payment.external_payment_intent_id
    assert body["job"]["is_accepted"] is True


@pytest.mark.anyio
async def test_status_repairs_mirror(client, db_session, customer, handyman, make_job, make_payment, customer_headers):
    job = make_job(customer, handyman)
    make_payment(job, PaymentStatus.ESCROWED)
    db_session.execute(update(Job).where(Job.id == job.id).values(payment_status="unpaid"))
    db_session.commit()

    body = (await _status(client, customer_headers, job.id)).json()

    assert body["job"]["payment_status"] == "escrowed"
    db_session.refresh(job)
    assert job.payment_status == "escrowed"


@pytest.mark.anyio
async def test_status_forbidden_for_outsiders(client, customer, handyman, make_user, make_job, headers_for):
    job = make_job(customer, handyman)
    outsider = make_user(UserRole.customer)

    response = await _status(client, headers_for(outsider), job.id)

    assert response.status_code == 403


@pytest.mark.anyio
async def test_history_amounts_depend_on_role(
    client, customer, handyman, make_job, make_payment, customer_headers, handyman_headers
):
    job = make_job(customer, handyman, status=JobStatus.COMPLETED)
    make_payment(job, PaymentStatus.RELEASED)

    customer_view = (await client.get("/payments/history", headers=customer_headers)).json()["payments"]
    handyman_view = (await client.get("/payments/history", headers=handyman_headers)).json()["payments"]

    assert [(item["job_id"], item["amount_cents"]) for item in customer_view] == [(job.id, 10800)]
    assert [(item["job_id"], item["amount_cents"]) for item in handyman_view] == [(job.id, 9500)]
    assert Decimal(handyman_view[0]["amount"]) == Decimal("95.00")


@pytest.mark.anyio
async def test_escrow_alerts_split_by_job_progress(
    client, customer, handyman, make_job, make_payment, customer_headers
):
    done = make_job(customer, handyman, status=JobStatus.COMPLETED)
    make_payment(done, PaymentStatus.ESCROWED)
    ongoing = make_job(customer, handyman, status=JobStatus.ACCEPTED, budget="50.00")
    make_payment(ongoing, PaymentStatus.ESCROWED)
    released = make_job(customer, handyman, status=JobStatus.COMPLETED)
    make_payment(released, PaymentStatus.RELEASED)

    response = await client.get("/payments/escrow-alerts", headers=customer_headers)

    assert response.status_code == 200
    body = response.json()
    summary = body["summary"]
    assert summary["total_jobs"] == 2
    assert summary["total_escrowed_cents"] == 10800 + 5400
    assert summary["total_handyman_payout_cents"] == 9500 + 4750
    assert [item["job_id"] for item in body["ready_to_release"]] == [done.id]
    assert [item["job_id"] for item in body["work_in_progress"]] == [ongoing.id]
    assert body["ready_to_release"][0]["days_since"] == 1
    assert body["work_in_progress"][0]["days_since"] == 3


@pytest.mark.anyio
async def test_escrow_alerts_need_customer_scope(client, handyman_headers):
    response = await client.get("/payments/escrow-alerts", headers=handyman_headers)
    assert response.status_code == 403
