import json
import logging

from app.core.logging import EscrowJsonFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("app.services.escrow", logging.INFO, __file__, 1, "Payment transitioned", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_record_carries_service_metadata_and_context():
    formatter = EscrowJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s", env="test")

    line = json.loads(formatter.format(_record(payment_id=7, to_status="escrowed")))

    assert line["message"] == "Payment transitioned"
    assert line["level"] == "INFO"
    assert line["logger"] == "app.services.escrow"
    assert line["service"] == "handyman-escrow"
    assert line["env"] == "test"
    assert line["payment_id"] == 7
    assert line["to_status"] == "escrowed"


def test_setup_logging_installs_single_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        setup_logging("debug", env="test")
        setup_logging("debug", env="test")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, EscrowJsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("stripe").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
