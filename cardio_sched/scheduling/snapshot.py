"""Bridge between the ORM and the pure engine: state snapshots and row writes."""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.core import models as orm
from cardio_sched.core.repository import (
    AssignmentRepository,
    AvailabilityRuleRepository,
    HolidayRepository,
    LeaveRepository,
    ProviderRepository,
    ServiceRepository,
)
from cardio_sched.scheduling.calendar import Holiday, HolidayCalendar
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    AvailabilityRuleInfo,
    LeaveInfo,
    ProviderInfo,
    ServiceInfo,
    TemplateEntry,
    TemplateInfo,
)


def _sid(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def as_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def provider_info(row: orm.Provider) -> ProviderInfo:
    return ProviderInfo(
        id=str(row.id),
        name=row.name,
        initials=row.initials,
        role=row.role,
        capabilities=list(row.capabilities or []),
        default_room_count=row.default_room_count or 0,
    )


def service_info(row: orm.Service) -> ServiceInfo:
    return ServiceInfo(
        id=str(row.id),
        name=row.name,
        time_block=row.time_block,
        required_capability=row.required_capability,
        requires_rooms=bool(row.requires_rooms),
    )


def assignment_info(row: orm.ScheduleAssignment) -> AssignmentInfo:
    return AssignmentInfo(
        id=str(row.id),
        provider_id=str(row.provider_id),
        service_id=str(row.service_id),
        date=row.date,
        time_block=row.time_block,
        room_count=row.room_count or 0,
        is_pto=bool(row.is_pto),
        is_covering=bool(row.is_covering),
        notes=row.notes,
    )


def rule_info(row: orm.ProviderAvailabilityRule) -> AvailabilityRuleInfo:
    return AvailabilityRuleInfo(
        id=str(row.id),
        provider_id=str(row.provider_id),
        service_id=_sid(row.service_id),
        day_of_week=row.day_of_week,
        time_block=row.time_block,
        rule_type=row.rule_type,
        enforcement=row.enforcement,
        reason=row.reason,
    )


def leave_info(row: orm.ProviderLeave) -> LeaveInfo:
    return LeaveInfo(
        id=str(row.id),
        provider_id=str(row.provider_id),
        start_date=row.start_date,
        end_date=row.end_date,
        leave_type=row.leave_type,
        reason=row.reason,
    )


def template_info(row: orm.ScheduleTemplate) -> TemplateInfo:
    return TemplateInfo(
        id=str(row.id),
        name=row.name,
        type=row.type,
        entries=[
            TemplateEntry(
                day_of_week=e.day_of_week,
                service_id=str(e.service_id),
                provider_id=str(e.provider_id),
                time_block=e.time_block,
                room_count=e.room_count or 0,
                is_pto=bool(e.is_pto),
                notes=e.notes,
            )
            for e in row.entries
        ],
    )


def assignment_columns(info: AssignmentInfo, keep_id: bool = False) -> dict:
    """Column values for inserting ``info`` as a ScheduleAssignment row."""
    columns = dict(
        provider_id=as_uuid(info.provider_id),
        service_id=as_uuid(info.service_id),
        date=info.date,
        time_block=info.time_block.value,
        room_count=info.room_count,
        is_pto=info.is_pto,
        is_covering=info.is_covering,
        notes=info.notes,
    )
    if keep_id and info.id:
        columns["id"] = as_uuid(info.id)
    return columns


@dataclass
class ScheduleSnapshot:
    """Reference data plus the assignments and leaves of one date range."""

    start: date
    end: date
    providers: list[ProviderInfo] = field(default_factory=list)
    services: list[ServiceInfo] = field(default_factory=list)
    assignments: list[AssignmentInfo] = field(default_factory=list)
    rules: list[AvailabilityRuleInfo] = field(default_factory=list)
    leaves: list[LeaveInfo] = field(default_factory=list)
    holidays: HolidayCalendar = field(default_factory=HolidayCalendar)

    @property
    def provider_map(self) -> dict[str, ProviderInfo]:
        return {p.id: p for p in self.providers}

    @property
    def service_map(self) -> dict[str, ServiceInfo]:
        return {s.id: s for s in self.services}


async def load_holidays(session: AsyncSession, inpatient_services=None) -> HolidayCalendar:
    rows = await HolidayRepository(session).list()
    extra = [Holiday(date=r.date, name=r.name) for r in rows]
    if inpatient_services is None:
        return HolidayCalendar(extra)
    return HolidayCalendar(extra, inpatient_services)


async def load_snapshot(
    session: AsyncSession,
    start: date,
    end: date,
    holidays: HolidayCalendar | None = None,
) -> ScheduleSnapshot:
    providers = await ProviderRepository(session).list()
    services = await ServiceRepository(session).list()
    assignments = await AssignmentRepository(session).list_by_date_range(start, end)
    rules = await AvailabilityRuleRepository(session).list()
    leaves = await LeaveRepository(session).list_overlapping(start, end)
    return ScheduleSnapshot(
        start=start,
        end=end,
        providers=[provider_info(p) for p in providers],
        services=[service_info(s) for s in services],
        assignments=[assignment_info(a) for a in assignments],
        rules=[rule_info(r) for r in rules],
        leaves=[leave_info(lv) for lv in leaves],
        holidays=holidays if holidays is not None else await load_holidays(session),
    )


class SessionScheduleWriter:
    """Step-log writer that commits each row change on its own."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.assignments = AssignmentRepository(session)

    async def insert_assignment(self, assignment: AssignmentInfo, *, keep_id: bool = False) -> str:
        row = await self.assignments.create(**assignment_columns(assignment, keep_id=keep_id))
        return str(row.id)

    async def delete_assignment(self, assignment_id: str) -> bool:
        return await self.assignments.delete(as_uuid(assignment_id))

    async def checkpoint(self) -> None:
        await self.session.commit()

    async def discard(self) -> None:
        await self.session.rollback()
