"""Room capacity and coverage endpoints."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from cardio_sched.api.dependencies import get_scheduling_service, to_http_error
from cardio_sched.scheduling.exceptions import SchedulingError
from cardio_sched.scheduling.models import (
    CoverageGap,
    CoverageSuggestionResult,
    RoomCapacity,
    RoomSuggestionResult,
    TimeBlock,
)
from cardio_sched.scheduling.service import SchedulingService

router = APIRouter()


class RoomSuggestionRequest(BaseModel):
    date: date
    time_block: TimeBlock
    assigned_provider_ids: list[str] = []


@router.get("/rooms/capacity", response_model=RoomCapacity)
async def room_capacity(
    date: date = Query(...),
    time_block: TimeBlock = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> RoomCapacity:
    try:
        return await service.room_capacity(date, time_block)
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("/rooms/suggestions", response_model=RoomSuggestionResult)
async def room_suggestions(
    body: RoomSuggestionRequest,
    service: SchedulingService = Depends(get_scheduling_service),
) -> RoomSuggestionResult:
    """Rank providers who could take Rooms to reach the target."""
    try:
        return await service.compute_room_suggestions(
            body.date, body.time_block, body.assigned_provider_ids
        )
    except SchedulingError as e:
        raise to_http_error(e)


@router.get("/coverage/suggestions", response_model=CoverageSuggestionResult)
async def coverage_suggestions(
    service_id: str = Query(...),
    date: date = Query(...),
    time_block: TimeBlock = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> CoverageSuggestionResult:
    try:
        return await service.compute_coverage_suggestions(service_id, date, time_block)
    except SchedulingError as e:
        raise to_http_error(e)


@router.get("/coverage/gaps", response_model=list[CoverageGap])
async def coverage_gaps(
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[CoverageGap]:
    try:
        return await service.coverage_gaps(start_date, end_date)
    except SchedulingError as e:
        raise to_http_error(e)
