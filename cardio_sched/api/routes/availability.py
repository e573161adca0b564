"""Availability rule endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.api.dependencies import get_scheduling_service
from cardio_sched.core.database import get_db
from cardio_sched.core.repository import AvailabilityRuleRepository
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    AvailabilityResult,
    AvailabilityRuleInfo,
    BulkAvailabilityResult,
    Enforcement,
    RuleType,
    TimeBlock,
)
from cardio_sched.scheduling.service import SchedulingService
from cardio_sched.scheduling.snapshot import as_uuid, rule_info

router = APIRouter(prefix="/availability")


class RuleCreate(BaseModel):
    provider_id: str
    service_id: Optional[str] = None
    day_of_week: int = Field(ge=0, le=6)
    time_block: TimeBlock
    rule_type: RuleType
    enforcement: Enforcement = Enforcement.HARD
    reason: Optional[str] = None


class SlotCheck(BaseModel):
    provider_id: str
    service_id: str
    date: date
    time_block: TimeBlock


def _parse_uuid(value: str, name: str = "ID"):
    try:
        return as_uuid(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


@router.get("/check", response_model=AvailabilityResult)
async def check_availability(
    provider_id: str = Query(...),
    service_id: str = Query(...),
    date: date = Query(...),
    time_block: TimeBlock = Query(...),
    service: SchedulingService = Depends(get_scheduling_service),
) -> AvailabilityResult:
    """Evaluate the provider's rules for one slot."""
    return await service.check_availability(provider_id, service_id, date, time_block)


@router.post("/bulk-check", response_model=BulkAvailabilityResult)
async def bulk_check(
    slots: list[SlotCheck],
    service: SchedulingService = Depends(get_scheduling_service),
) -> BulkAvailabilityResult:
    proposals = [AssignmentInfo(**s.model_dump()) for s in slots]
    return await service.check_bulk_availability(proposals)


@router.get("/rules", response_model=list[AvailabilityRuleInfo])
async def list_rules(
    provider_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[AvailabilityRuleInfo]:
    ids = [_parse_uuid(provider_id, "provider_id")] if provider_id else None
    rows = await AvailabilityRuleRepository(db).list(ids)
    return [rule_info(r) for r in rows]


@router.post("/rules", response_model=AvailabilityRuleInfo, status_code=201)
async def create_rule(
    body: RuleCreate,
    db: AsyncSession = Depends(get_db),
) -> AvailabilityRuleInfo:
    row = await AvailabilityRuleRepository(db).create(
        provider_id=_parse_uuid(body.provider_id, "provider_id"),
        service_id=_parse_uuid(body.service_id, "service_id") if body.service_id else None,
        day_of_week=body.day_of_week,
        time_block=body.time_block.value,
        rule_type=body.rule_type.value,
        enforcement=body.enforcement.value,
        reason=body.reason,
    )
    return rule_info(row)


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(rule_id: str, db: AsyncSession = Depends(get_db)) -> None:
    if not await AvailabilityRuleRepository(db).delete(_parse_uuid(rule_id, "rule_id")):
        raise HTTPException(status_code=404, detail="Rule not found")
