import pytest
from uuid import uuid4

from app.config import get_settings
from app.models.audit import AuditLog
from app.models.user import UserRole


@pytest.mark.anyio("asyncio")
async def test_user_creation_audit_has_admin_actor(client, admin, admin_headers, db_session):
    payload = {
        "name": "Audit User",
        "email": f"audit-user-{uuid4().hex[:6]}@example.com",
        "role": "handyman",
        "stripe_account_id": "acct_1TestAccount",
    }
    resp = await client.post("/users", json=payload, headers=admin_headers)
    assert resp.status_code == 201, resp.text
    assert resp.json()["role"] == "handyman"

    db_session.expire_all()
    audit = (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "CREATE_USER")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert audit is not None
    assert audit.actor == f"admin:{admin.id}"
    assert audit.data_json["email"].startswith("***@")


@pytest.mark.anyio("asyncio")
async def test_duplicate_email_rejected(client, customer, admin_headers):
    payload = {"name": "Copy", "email": customer.email, "role": "customer"}
    resp = await client.post("/users", json=payload, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "USER_CREATE_FAILED"


@pytest.mark.anyio("asyncio")
async def test_invalid_stripe_account_rejected(client, admin_headers):
    payload = {"name": "Bad", "email": f"bad-{uuid4().hex[:6]}@example.com", "role": "handyman", "stripe_account_id": "nope"}
    resp = await client.post("/users", json=payload, headers=admin_headers)
    assert resp.status_code == 422


@pytest.mark.anyio("asyncio")
async def test_customer_cannot_create_users(client, customer_headers):
    payload = {"name": "X", "email": f"x-{uuid4().hex[:6]}@example.com", "role": "customer"}
    resp = await client.post("/users", json=payload, headers=customer_headers)
    assert resp.status_code == 403


@pytest.mark.anyio("asyncio")
async def test_get_user(client, handyman, admin_headers):
    resp = await client.get(f"/users/{handyman.id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["stripe_onboarding_complete"] is True


@pytest.mark.anyio("asyncio")
async def test_handyman_onboarding_creates_connected_account(client, gateway, db_session, make_user, headers_for):
    newcomer = make_user(UserRole.handyman)

    resp = await client.post("/users/me/stripe/onboarding", headers=headers_for(newcomer))

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["stripe_account_id"].startswith("acct_test_")
    assert body["url"].endswith(body["stripe_account_id"])
    assert body["stripe_onboarding_complete"] is False
    account_call = gateway.calls_to("create_connected_account")[0]
    assert account_call["email"] == newcomer.email
    assert account_call["idempotency_key"] == f"connect_account_{newcomer.id}"
    link_call = gateway.calls_to("create_account_link")[0]
    assert link_call["return_url"] == get_settings().STRIPE_CONNECT_RETURN_URL
    db_session.refresh(newcomer)
    assert newcomer.stripe_account_id == body["stripe_account_id"]
    assert (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "STRIPE_ACCOUNT_CREATED", AuditLog.entity_id == newcomer.id)
        .count()
        == 1
    )


@pytest.mark.anyio("asyncio")
async def test_onboarding_reuses_existing_account(client, gateway, handyman, handyman_headers):
    resp = await client.post("/users/me/stripe/onboarding", headers=handyman_headers)

    assert resp.status_code == 200
    assert resp.json()["stripe_account_id"] == handyman.stripe_account_id
    assert gateway.calls_to("create_connected_account") == []
    assert gateway.calls_to("create_account_link")[0]["account_id"] == handyman.stripe_account_id


@pytest.mark.anyio("asyncio")
async def test_customer_cannot_onboard(client, customer_headers):
    resp = await client.post("/users/me/stripe/onboarding", headers=customer_headers)
    assert resp.status_code == 403


@pytest.mark.anyio("asyncio")
async def test_onboarding_account_failure_leaves_user_untouched(client, gateway, db_session, make_user, headers_for):
    newcomer = make_user(UserRole.handyman)
    gateway.fail_on.add("create_connected_account")

    resp = await client.post("/users/me/stripe/onboarding", headers=headers_for(newcomer))

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "PAYMENT_PROCESSOR_ERROR"
    db_session.refresh(newcomer)
    assert newcomer.stripe_account_id is None


@pytest.mark.anyio("asyncio")
async def test_admin_creates_account_link_for_handyman(client, gateway, make_user, admin_headers):
    newcomer = make_user(UserRole.handyman)

    resp = await client.post(f"/users/{newcomer.id}/stripe/account-link", headers=admin_headers)

    assert resp.status_code == 201, resp.text
    assert resp.json()["url"].startswith("https://connect.stripe.test/")
    assert len(gateway.calls_to("create_connected_account")) == 1


@pytest.mark.anyio("asyncio")
async def test_account_link_only_for_handymen(client, customer, admin_headers):
    resp = await client.post(f"/users/{customer.id}/stripe/account-link", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "NOT_A_HANDYMAN"


@pytest.mark.anyio("asyncio")
async def test_account_link_unknown_user(client, admin_headers):
    resp = await client.post("/users/999999/stripe/account-link", headers=admin_headers)
    assert resp.status_code == 404
