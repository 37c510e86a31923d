"""Utility helpers for standardized error responses."""
from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


def not_found(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response(code, message))


def forbidden(message: str = "You are not allowed to perform this action.") -> HTTPException:
    """Authorization failure that leaks nothing about the resource."""

    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=error_response("FORBIDDEN", message))


def bad_request(code: str, message: str, details: dict[str, Any] | None = None) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_response(code, message, details))


def state_conflict(code: str, message: str, current_status: Any, **details: Any) -> HTTPException:
    """Conflict with the current state, surfaced so the caller can resynchronize."""

    value = getattr(current_status, "value", current_status)
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=error_response(code, message, {"current_status": value, **details}),
    )


def processor_error(message: str, details: dict[str, Any] | None = None) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=error_response("PAYMENT_PROCESSOR_ERROR", message, details),
    )


def reconciliation_required(message: str, details: dict[str, Any]) -> HTTPException:
    """Money moved at the processor but the local record could not follow."""

    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error_response("RECONCILIATION_REQUIRED", message, details),
    )


__all__ = [
    "error_response",
    "not_found",
    "forbidden",
    "bad_request",
    "state_conflict",
    "processor_error",
    "reconciliation_required",
]
