"""Routes for Stripe webhook handling."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db import get_db
from app.services import webhooks as webhooks_service

router = APIRouter(prefix="/stripe", tags=["stripe"])


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> JSONResponse:
    """Receive a signed Stripe event; processing failures are answered with 202."""

    status_code, body = await webhooks_service.handle_stripe_webhook(request, db)
    return JSONResponse(status_code=status_code, content=body)


__all__ = ["router"]
