"""Support ticket endpoints: reporting for participants, resolution for administrators."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiScope
from app.models.support_ticket import SupportTicket, TicketStatus
from app.models.user import User
from app.schemas.ticket import TicketCreate, TicketRead, TicketResolutionRead, TicketResolve
from app.security import get_current_user, require_admin, require_scope
from app.services import refunds as refunds_service
from app.services import support as support_service
from app.services.gateway import PaymentGateway, get_payment_gateway

support_router = APIRouter(prefix="/support", tags=["support"])
admin_router = APIRouter(prefix="/admin/tickets", tags=["admin"])


@support_router.post(
    "/tickets",
    response_model=TicketRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_scope({ApiScope.customer, ApiScope.handyman}))],
)
def create_ticket(
    payload: TicketCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> SupportTicket:
    """Report a problem on a job."""

    return support_service.create_ticket(
        db,
        job_id=payload.job_id,
        actor=user,
        problem_type=payload.problem_type,
        description=payload.description,
        priority=payload.priority,
    )


@admin_router.get("", response_model=list[TicketRead])
def list_tickets(
    ticket_status: TicketStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> list[SupportTicket]:
    return support_service.list_tickets(db, status=ticket_status)


@admin_router.post("/{ticket_id}/resolve", response_model=TicketResolutionRead)
def resolve_ticket(
    ticket_id: int,
    payload: TicketResolve,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> TicketResolutionRead:
    """Settle the ticket's payment with a refund to the customer or a release to the handyman."""

    resolution = refunds_service.resolve_ticket(
        db, gateway, ticket_id=ticket_id, action=payload.action, admin=admin
    )
    refund = resolution.refund
    return TicketResolutionRead(
        ticket=TicketRead.model_validate(resolution.ticket),
        payment_status=resolution.payment.status,
        refund_id=refund.id if refund is not None else None,
        refund_status=refund.status if refund is not None else None,
        message=resolution.message,
    )


__all__ = ["admin_router", "support_router"]
