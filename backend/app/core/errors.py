"""
Scheduling error taxonomy and its HTTP mapping.

Services raise these; routers stay thin and let the handler registered in
main.py turn them into JSON responses.
"""
from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class SchedulingError(Exception):
    """Base class for expected scheduling failures."""

    code = "scheduling_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_payload(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class InvalidRequest(SchedulingError):
    """Malformed or impossible input (past date, unknown booking type). Never retried."""

    code = "invalid_request"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class SlotUnavailable(SchedulingError):
    """Expected business outcome: the caller should offer another slot."""

    code = "slot_unavailable"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reason: str, detail: str | None = None) -> None:
        super().__init__(detail or f"Slot unavailable: {reason}")
        self.reason = reason

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["reason"] = self.reason
        return payload


class Conflict(SchedulingError):
    """An admin mutation is blocked by dependent state; detail names the dependency."""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class NotFound(SchedulingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
