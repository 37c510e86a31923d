"""Application wiring: startup guard and error envelopes."""
import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.main import _assert_webhook_secret, app


def test_webhook_secret_required_outside_dev():
    settings = Settings(app_env="prod", STRIPE_WEBHOOK_SECRET="")
    with pytest.raises(RuntimeError):
        _assert_webhook_secret(settings)


def test_webhook_secret_optional_in_dev():
    _assert_webhook_secret(Settings(app_env="dev", STRIPE_WEBHOOK_SECRET=None))
    _assert_webhook_secret(Settings(app_env="prod", STRIPE_WEBHOOK_SECRET="whsec_live"))


@pytest.mark.anyio
async def test_unhandled_error_uses_error_envelope(monkeypatch, customer_headers):
    def _explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr("app.services.payments.payment_history", _explode)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as raw_client:
        response = await raw_client.get("/payments/history", headers=customer_headers)

    assert response.status_code == 500
    assert response.json() == {
        "error": {"code": "INTERNAL_SERVER_ERROR", "message": "An unexpected error occurred."}
    }


@pytest.mark.anyio
async def test_validation_errors_return_422(client, customer_headers):
    response = await client.post("/payments/create", json={"job_id": 0}, headers=customer_headers)
    assert response.status_code == 422
