"""Calendar endpoints: holidays, provider leave and per-slot day metadata."""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.core.database import get_db
from cardio_sched.core.repository import (
    DayMetadataRepository,
    HolidayRepository,
    LeaveRepository,
)
from cardio_sched.scheduling.models import DayBlock, LeaveInfo, LeaveType
from cardio_sched.scheduling.snapshot import as_uuid, leave_info, load_holidays

router = APIRouter()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class HolidayOut(BaseModel):
    date: date
    name: str


class HolidayCreate(BaseModel):
    date: date
    name: str


class LeaveCreate(BaseModel):
    provider_id: str
    start_date: date
    end_date: date
    leave_type: LeaveType = LeaveType.OTHER
    reason: Optional[str] = None


class DayMetadataIn(BaseModel):
    date: date
    time_block: DayBlock
    chp_room_in_use: bool = False
    chp_room_note: Optional[str] = None
    extra_room_available: bool = False
    extra_room_note: Optional[str] = None
    day_note: Optional[str] = None


class DayMetadataOut(DayMetadataIn):
    id: str
    updated_at: Optional[datetime] = None


def _parse_uuid(value: str, name: str = "ID"):
    try:
        return as_uuid(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def _check_range(start: date, end: date) -> None:
    if end < start:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")


# ---------------------------------------------------------------------------
# Holidays
# ---------------------------------------------------------------------------


@router.get("/holidays", response_model=list[HolidayOut])
async def list_holidays(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
) -> list[HolidayOut]:
    """Federal holidays plus ad-hoc closures in the range."""
    _check_range(start_date, end_date)
    calendar = await load_holidays(db)
    return [HolidayOut(date=h.date, name=h.name) for h in calendar.holidays_in_range(start_date, end_date)]


@router.post("/holidays", response_model=HolidayOut, status_code=201)
async def create_holiday(body: HolidayCreate, db: AsyncSession = Depends(get_db)) -> HolidayOut:
    row = await HolidayRepository(db).create(date=body.date, name=body.name)
    return HolidayOut(date=row.date, name=row.name)


# ---------------------------------------------------------------------------
# Leave
# ---------------------------------------------------------------------------


@router.get("/leaves", response_model=list[LeaveInfo])
async def list_leaves(
    start_date: date = Query(...),
    end_date: date = Query(...),
    provider_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> list[LeaveInfo]:
    _check_range(start_date, end_date)
    pid = _parse_uuid(provider_id, "provider_id") if provider_id else None
    rows = await LeaveRepository(db).list_overlapping(start_date, end_date, pid)
    return [leave_info(r) for r in rows]


@router.post("/leaves", response_model=LeaveInfo, status_code=201)
async def create_leave(body: LeaveCreate, db: AsyncSession = Depends(get_db)) -> LeaveInfo:
    _check_range(body.start_date, body.end_date)
    row = await LeaveRepository(db).create(
        provider_id=_parse_uuid(body.provider_id, "provider_id"),
        start_date=body.start_date,
        end_date=body.end_date,
        leave_type=body.leave_type.value,
        reason=body.reason,
    )
    return leave_info(row)


@router.delete("/leaves/{leave_id}", status_code=204)
async def delete_leave(leave_id: str, db: AsyncSession = Depends(get_db)) -> None:
    if not await LeaveRepository(db).delete(_parse_uuid(leave_id, "leave_id")):
        raise HTTPException(status_code=404, detail="Leave not found")


# ---------------------------------------------------------------------------
# Day metadata
# ---------------------------------------------------------------------------


def _metadata_out(row) -> DayMetadataOut:
    return DayMetadataOut(
        id=str(row.id),
        date=row.date,
        time_block=row.time_block,
        chp_room_in_use=bool(row.chp_room_in_use),
        chp_room_note=row.chp_room_note,
        extra_room_available=bool(row.extra_room_available),
        extra_room_note=row.extra_room_note,
        day_note=row.day_note,
        updated_at=row.updated_at,
    )


@router.get("/day-metadata", response_model=list[DayMetadataOut])
async def list_day_metadata(
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
) -> list[DayMetadataOut]:
    _check_range(start_date, end_date)
    rows = await DayMetadataRepository(db).list_by_date_range(start_date, end_date)
    return [_metadata_out(r) for r in rows]


@router.put("/day-metadata", response_model=DayMetadataOut)
async def upsert_day_metadata(body: DayMetadataIn, db: AsyncSession = Depends(get_db)) -> DayMetadataOut:
    """Create or replace the notes for one date and block."""
    fields = body.model_dump(exclude={"date", "time_block"})
    row = await DayMetadataRepository(db).upsert(body.date, body.time_block.value, **fields)
    return _metadata_out(row)


# ---------------------------------------------------------------------------
# Override sessions
# ---------------------------------------------------------------------------


@router.delete("/overrides", status_code=204)
async def clear_overrides(
    request: Request,
    x_session_id: Optional[str] = Header(default=None),
) -> None:
    """Forget every PTO override granted to this editing session."""
    if x_session_id:
        request.app.state.override_registry.drop(x_session_id)
