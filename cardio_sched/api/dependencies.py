"""FastAPI dependencies shared by the scheduling routes."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.config import get_settings
from cardio_sched.core.database import get_db
from cardio_sched.scheduling.conflicts import OverrideSession
from cardio_sched.scheduling.exceptions import (
    NotFoundError,
    PolicyConflictError,
    SchedulingError,
)
from cardio_sched.scheduling.service import SchedulingService


async def get_scheduling_service(db: AsyncSession = Depends(get_db)) -> SchedulingService:
    return SchedulingService(db, get_settings())


async def get_override_session(
    request: Request,
    x_session_id: str | None = Header(default=None),
) -> OverrideSession | None:
    """Per-editor PTO override set, keyed by the X-Session-Id header.

    Without the header overrides are not remembered between requests.
    """
    if not x_session_id:
        return None
    return request.app.state.override_registry.get(x_session_id)


def to_http_error(exc: SchedulingError) -> HTTPException:
    """Translate a scheduling error into the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PolicyConflictError):
        return HTTPException(
            status_code=409,
            detail={"error": str(exc), "code": exc.code, **exc.details},
        )
    # ScheduleValidationError, HistoryStateError and anything else expected
    return HTTPException(status_code=400, detail=str(exc))
