"""Support tickets: problem reports on jobs, resolved by administrators."""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import Job, SupportTicket, TicketStatus, User
from app.utils.audit import actor_for_user, log_audit
from app.utils.errors import forbidden, not_found

logger = logging.getLogger(__name__)


def open_ticket(
    db: Session,
    *,
    job_id: int | None,
    reporter: User,
    problem_type: str,
    description: str,
    priority: str = "normal",
) -> SupportTicket:
    """Add an open ticket to the current unit of work; the caller commits."""

    ticket = SupportTicket(
        job_id=job_id,
        reported_by=reporter.id,
        problem_type=problem_type,
        description=description,
        status=TicketStatus.OPEN,
        priority=priority,
    )
    db.add(ticket)
    db.flush()
    log_audit(
        db,
        actor=actor_for_user(reporter),
        action="TICKET_OPENED",
        entity="SupportTicket",
        entity_id=ticket.id,
        data={"job_id": job_id, "problem_type": problem_type, "priority": priority},
    )
    logger.info(
        "Support ticket opened",
        extra={"ticket_id": ticket.id, "job_id": job_id, "problem_type": problem_type},
    )
    return ticket


def create_ticket(
    db: Session,
    *,
    job_id: int,
    actor: User,
    problem_type: str,
    description: str,
    priority: str = "normal",
) -> SupportTicket:
    """Report a problem on a job the caller posted or accepted."""

    job = db.get(Job, job_id)
    if job is None:
        raise not_found("JOB_NOT_FOUND", "Job not found.")
    if actor.id not in (job.posted_by, job.accepted_by):
        raise forbidden("Only job participants can report a problem.")

    ticket = open_ticket(
        db,
        job_id=job.id,
        reporter=actor,
        problem_type=problem_type,
        description=description,
        priority=priority,
    )
    db.commit()
    db.refresh(ticket)
    return ticket


def list_tickets(db: Session, *, status: TicketStatus | None = None) -> list[SupportTicket]:
    stmt = select(SupportTicket).order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc())
    if status is not None:
        stmt = stmt.where(SupportTicket.status == status)
    return list(db.scalars(stmt).all())


__all__ = ["create_ticket", "list_tickets", "open_ticket"]
