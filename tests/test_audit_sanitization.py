from app.models.audit import AuditLog
from app.utils.audit import log_audit


def test_audit_log_masks_sensitive_fields(db_session):
    payload = {
        "client_secret": "pi_123_secret_abc",
        "destination": "acct_1234567890",
        "email": "sensitive@example.com",
        "nested": [{"stripe_account_id": "acct_9876543210"}],
        "amount": 10800,
    }

    log_audit(
        db_session,
        actor="test",
        action="MASK_TEST",
        entity="Payment",
        entity_id=1,
        data=payload,
    )
    db_session.commit()

    entry = (
        db_session.query(AuditLog)
        .filter(AuditLog.action == "MASK_TEST")
        .order_by(AuditLog.id.desc())
        .first()
    )
    assert entry is not None
    assert entry.data_json["client_secret"] == "***"
    assert entry.data_json["destination"] == "***7890"
    assert entry.data_json["email"] == "***@example.com"
    assert entry.data_json["nested"][0]["stripe_account_id"] == "***3210"
    assert entry.data_json["amount"] == 10800
