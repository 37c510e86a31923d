"""API routers for the handyman escrow backend."""
from fastapi import APIRouter

from . import apikeys, health, payments, tickets, users, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(users.router)
    api_router.include_router(apikeys.router)
    api_router.include_router(payments.router)
    api_router.include_router(webhooks.router)
    api_router.include_router(tickets.support_router)
    api_router.include_router(tickets.admin_router)
    return api_router
