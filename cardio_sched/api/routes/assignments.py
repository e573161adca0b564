"""Assignment placement endpoints: create, patch, delete, PTO conflicts and bulk add/remove."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from cardio_sched.api.dependencies import (
    get_override_session,
    get_scheduling_service,
    to_http_error,
)
from cardio_sched.scheduling.conflicts import OverrideSession
from cardio_sched.scheduling.exceptions import SchedulingError
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    BulkAction,
    BulkPattern,
    BulkProviderResult,
    PlacementCheck,
    TimeBlock,
)
from cardio_sched.scheduling.service import SchedulingService
from cardio_sched.scheduling.snapshot import assignment_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assignments")


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class AssignmentCreate(BaseModel):
    provider_id: str
    service_id: str
    date: date
    time_block: TimeBlock
    room_count: int = Field(default=0, ge=0)
    is_covering: bool = False
    notes: Optional[str] = None
    override: bool = False
    acknowledge_warnings: bool = False


class AssignmentPatch(BaseModel):
    time_block: Optional[TimeBlock] = None
    room_count: Optional[int] = None
    notes: Optional[str] = None
    is_covering: Optional[bool] = None
    override: bool = False
    acknowledge_warnings: bool = False


class AssignmentCreated(BaseModel):
    assignment: AssignmentInfo
    check: PlacementCheck


class BulkProviderRequest(BaseModel):
    provider_id: str
    action: BulkAction
    start_date: date
    end_date: date
    pattern: BulkPattern = Field(default_factory=BulkPattern)
    room_count: int = Field(default=0, ge=0)
    preview: bool = False


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=list[AssignmentInfo])
async def list_assignments(
    start_date: date = Query(...),
    end_date: date = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[AssignmentInfo]:
    if end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")
    rows = await service.assignments.list_by_date_range(start_date, end_date)
    return [assignment_info(r) for r in rows]


@router.post("/validate", response_model=PlacementCheck)
async def validate_assignment(
    body: AssignmentCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    override_session: Optional[OverrideSession] = Depends(get_override_session),
) -> PlacementCheck:
    """Dry-run the placement checks without writing anything."""
    proposal = AssignmentInfo(**body.model_dump(exclude={"override", "acknowledge_warnings"}))
    try:
        return await service.validate_assignment(
            proposal,
            override=body.override,
            override_session=override_session,
            acknowledge_warnings=body.acknowledge_warnings,
        )
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("", response_model=AssignmentCreated, status_code=201)
async def create_assignment(
    body: AssignmentCreate,
    service: SchedulingService = Depends(get_scheduling_service),
    override_session: Optional[OverrideSession] = Depends(get_override_session),
) -> AssignmentCreated:
    """Place a provider in a slot.

    Rejections come back as 409 with a ``code``. ``work_over_pto`` and
    ``leave`` can be retried with ``override``; ``availability_warn`` with
    ``acknowledge_warnings``.
    """
    proposal = AssignmentInfo(**body.model_dump(exclude={"override", "acknowledge_warnings"}))
    try:
        assignment, check = await service.create_assignment(
            proposal,
            override=body.override,
            override_session=override_session,
            acknowledge_warnings=body.acknowledge_warnings,
        )
    except SchedulingError as e:
        raise to_http_error(e)
    return AssignmentCreated(assignment=assignment, check=check)


@router.patch("/{assignment_id}", response_model=AssignmentInfo)
async def patch_assignment(
    assignment_id: str,
    body: AssignmentPatch,
    service: SchedulingService = Depends(get_scheduling_service),
    override_session: Optional[OverrideSession] = Depends(get_override_session),
) -> AssignmentInfo:
    try:
        return await service.patch_assignment(
            assignment_id, override_session=override_session, **body.model_dump()
        )
    except SchedulingError as e:
        raise to_http_error(e)


@router.delete("/{assignment_id}", status_code=204)
async def delete_assignment(
    assignment_id: str,
    service: SchedulingService = Depends(get_scheduling_service),
) -> None:
    try:
        await service.delete_assignment(assignment_id)
    except SchedulingError as e:
        raise to_http_error(e)


@router.get("/pto-conflicts", response_model=list[AssignmentInfo])
async def pto_conflicts(
    provider_id: str = Query(...),
    date: date = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[AssignmentInfo]:
    """Work assignments that overlap the provider's PTO on ``date``."""
    return await service.find_pto_conflicts(provider_id, date)


@router.post("/bulk-provider", response_model=BulkProviderResult)
async def bulk_provider(
    body: BulkProviderRequest,
    service: SchedulingService = Depends(get_scheduling_service),
) -> BulkProviderResult:
    try:
        return await service.bulk_provider(
            body.provider_id,
            body.action,
            body.start_date,
            body.end_date,
            pattern=body.pattern,
            room_count=body.room_count,
            preview=body.preview,
        )
    except SchedulingError as e:
        raise to_http_error(e)
