"""Template endpoints: list, apply, apply alternating and create from a week."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from cardio_sched.api.dependencies import get_scheduling_service, to_http_error
from cardio_sched.scheduling.exceptions import SchedulingError
from cardio_sched.scheduling.models import (
    ApplyOptions,
    TemplateApplyResult,
    TemplateInfo,
    TemplateType,
)
from cardio_sched.scheduling.service import SchedulingService

router = APIRouter(prefix="/templates")


class ApplyTemplateRequest(BaseModel):
    template_id: str
    start_date: date
    end_date: date
    options: ApplyOptions = Field(default_factory=ApplyOptions)


class ApplyAlternatingRequest(BaseModel):
    template_ids: list[str]
    rotation_pattern: list[int]
    start_date: date
    end_date: date
    options: ApplyOptions = Field(default_factory=ApplyOptions)


class TemplateFromWeek(BaseModel):
    name: str
    week_date: date
    description: Optional[str] = None
    type: TemplateType = TemplateType.WEEKLY


@router.get("", response_model=list[TemplateInfo])
async def list_templates(
    service: SchedulingService = Depends(get_scheduling_service),
) -> list[TemplateInfo]:
    return await service.list_templates()


@router.get("/{template_id}", response_model=TemplateInfo)
async def get_template(
    template_id: str,
    service: SchedulingService = Depends(get_scheduling_service),
) -> TemplateInfo:
    try:
        return await service.get_template(template_id)
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("/apply", response_model=TemplateApplyResult)
async def apply_template(
    body: ApplyTemplateRequest,
    service: SchedulingService = Depends(get_scheduling_service),
) -> TemplateApplyResult:
    """Apply one template to every week of the range."""
    try:
        return await service.apply_template(
            body.template_id, body.start_date, body.end_date, body.options
        )
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("/apply-alternating", response_model=TemplateApplyResult)
async def apply_alternating(
    body: ApplyAlternatingRequest,
    service: SchedulingService = Depends(get_scheduling_service),
) -> TemplateApplyResult:
    """Rotate templates week by week following ``rotation_pattern``."""
    try:
        return await service.apply_alternating(
            body.template_ids,
            body.rotation_pattern,
            body.start_date,
            body.end_date,
            body.options,
        )
    except SchedulingError as e:
        raise to_http_error(e)


@router.post("/from-week", response_model=TemplateInfo, status_code=201)
async def template_from_week(
    body: TemplateFromWeek,
    service: SchedulingService = Depends(get_scheduling_service),
) -> TemplateInfo:
    try:
        return await service.template_from_week(
            body.name, body.week_date, body.description, body.type
        )
    except SchedulingError as e:
        raise to_http_error(e)
