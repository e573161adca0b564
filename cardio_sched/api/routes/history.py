"""Change history endpoints: list, undo and redo."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cardio_sched.api.dependencies import get_scheduling_service, to_http_error
from cardio_sched.scheduling.exceptions import SchedulingError
from cardio_sched.scheduling.models import HistoryEntry, RedoResult, UndoResult
from cardio_sched.scheduling.service import SchedulingService

router = APIRouter(prefix="/history")


class UndoRequest(BaseModel):
    force: bool = False


@router.get("", response_model=list[HistoryEntry])
async def list_history(
    limit: Optional[int] = Query(None, ge=1, le=200),
    days_back: Optional[int] = Query(None, ge=1),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[HistoryEntry]:
    settings = service.settings
    return await service.history.list_history(
        limit=limit or settings.history_default_limit,
        days_back=days_back or settings.history_default_days_back,
    )


@router.post("/{history_id}/undo", response_model=UndoResult)
async def undo(
    history_id: str,
    body: UndoRequest = UndoRequest(),
    service: SchedulingService = Depends(get_scheduling_service),
) -> UndoResult:
    """Undo an operation.

    When the affected range changed since, the response lists the drift and
    sets ``requires_confirmation``; resend with ``force`` to proceed.
    """
    try:
        return await service.history.undo(history_id, force=body.force)
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("/{history_id}/redo", response_model=RedoResult)
async def redo(
    history_id: str,
    service: SchedulingService = Depends(get_scheduling_service),
) -> RedoResult:
    try:
        return await service.history.redo(history_id)
    except SchedulingError as e:
        raise to_http_error(e)
