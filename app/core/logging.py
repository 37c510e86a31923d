"""JSON logging for the escrow service.

Every record carries the service name and environment so payment events can
be filtered across deployments. Context passed through ``extra=`` (payment and
job ids, statuses, Stripe event ids) lands as top-level JSON keys.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "handyman-escrow"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("stripe", "sqlalchemy.engine", "alembic.runtime.migration")


class EscrowJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping records with service metadata."""

    def __init__(self, *args: Any, env: str = "dev", **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.env = env

    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["logger"] = log_record.pop("name", record.name)
        log_record.setdefault("service", SERVICE_NAME)
        log_record.setdefault("env", self.env)


def setup_logging(level: str = "INFO", env: str = "dev") -> None:
    """Configure root logging with a JSON formatter."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(EscrowJsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s", env=env))
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["EscrowJsonFormatter", "get_logger", "setup_logging"]
