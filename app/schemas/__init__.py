"""Schema package exports."""
from .payment import (
    EscrowAlertsRead,
    FeeBreakdownRead,
    PaymentConfirm,
    PaymentConfirmRead,
    PaymentCreate,
    PaymentCreateRead,
    PaymentHistoryRead,
    PaymentRead,
    PaymentRelease,
    PaymentReleaseRead,
    PaymentStatusRead,
)
from .refund import RefundCreate, RefundCreateRead, RefundListRead
from .ticket import TicketCreate, TicketRead, TicketResolutionRead, TicketResolve
from .user import UserCreate, UserRead

__all__ = [
    "EscrowAlertsRead",
    "FeeBreakdownRead",
    "PaymentConfirm",
    "PaymentConfirmRead",
    "PaymentCreate",
    "PaymentCreateRead",
    "PaymentHistoryRead",
    "PaymentRead",
    "PaymentRelease",
    "PaymentReleaseRead",
    "PaymentStatusRead",
    "RefundCreate",
    "RefundCreateRead",
    "RefundListRead",
    "TicketCreate",
    "TicketRead",
    "TicketResolutionRead",
    "TicketResolve",
    "UserCreate",
    "UserRead",
]
