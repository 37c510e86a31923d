"""ORM models package."""
from .api_key import ApiKey, ApiScope
from .audit import AuditLog
from .base import Base
from .job import UNPAID, Job, JobStatus
from .payment import (
    PAYMENT_TRANSITIONS,
    TERMINAL_PAYMENT_STATUSES,
    IllegalTransition,
    Payment,
    PaymentStatus,
)
from .refund import Refund, RefundStatus, RefundType
from .support_ticket import SupportTicket, TicketAction, TicketStatus
from .user import User, UserRole
from .webhook_event import WebhookEvent

__all__ = [
    "ApiKey",
    "ApiScope",
    "AuditLog",
    "Base",
    "IllegalTransition",
    "Job",
    "JobStatus",
    "PAYMENT_TRANSITIONS",
    "Payment",
    "PaymentStatus",
    "Refund",
    "RefundStatus",
    "RefundType",
    "SupportTicket",
    "TERMINAL_PAYMENT_STATUSES",
    "TicketAction",
    "TicketStatus",
    "UNPAID",
    "User",
    "UserRole",
    "WebhookEvent",
]
