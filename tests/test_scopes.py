"""Scope enforcement regression tests."""
from uuid import uuid4

import pytest
from sqlalchemy import select

from app.models.api_key import ApiScope
from app.models.audit import AuditLog


@pytest.mark.anyio
async def test_handyman_cannot_manage_apikeys(client, handyman_headers):
    response = await client.get("/apikeys/1", headers=handyman_headers)
    assert response.status_code == 403
    payload = response.json()
    assert payload["error"]["code"] == "INSUFFICIENT_SCOPE"


@pytest.mark.anyio
async def test_handyman_cannot_create_payment(client, handyman_headers):
    response = await client.post("/payments/create", json={"job_id": 1}, headers=handyman_headers)
    assert response.status_code == 403


@pytest.mark.anyio
async def test_missing_key_is_unauthorized(client):
    response = await client.get("/payments/history")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "NO_API_KEY"


@pytest.mark.anyio
async def test_unknown_key_is_unauthorized(client):
    response = await client.get("/payments/history", headers={"X-API-Key": f"bogus-{uuid4().hex}"})
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.anyio
async def test_revoked_key_is_rejected(client, customer, make_api_key):
    token = f"revoked-{uuid4().hex}"
    make_api_key(customer, token, is_active=False)
    response = await client.get("/payments/history", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


@pytest.mark.anyio
async def test_admin_creates_and_revokes_key(client, db_session, admin_headers, customer):
    created = await client.post(
        "/apikeys",
        json={"name": f"customer-{uuid4().hex[:8]}", "scope": "customer", "user_id": customer.id},
        headers=admin_headers,
    )
    assert created.status_code == 201, created.text
    body = created.json()
    assert body["key"]

    history = await client.get("/payments/history", headers={"X-API-Key": body["key"]})
    assert history.status_code == 200

    revoked = await client.delete(f"/apikeys/{body['id']}", headers=admin_headers)
    assert revoked.status_code == 204
    again = await client.get("/payments/history", headers={"X-API-Key": body["key"]})
    assert again.status_code == 401


@pytest.mark.anyio
async def test_key_usage_is_audited(client, db_session, customer, make_api_key):
    token = f"audited-{uuid4().hex}"
    api_key = make_api_key(customer, token, ApiScope.customer)

    response = await client.get("/payments/history", headers={"X-API-Key": token})

    assert response.status_code == 200
    audit_entry = db_session.execute(
        select(AuditLog)
        .where(AuditLog.action == "API_KEY_USED", AuditLog.entity_id == api_key.id)
        .order_by(AuditLog.at.desc())
    ).scalars().first()
    assert audit_entry is not None
    assert audit_entry.actor == f"apikey:{api_key.id}"


@pytest.mark.anyio
async def test_inactive_user_rejected(client, db_session, customer, headers_for):
    headers = headers_for(customer)
    customer.is_active = False
    db_session.commit()

    response = await client.get("/payments/history", headers=headers)

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "USER_INACTIVE"
