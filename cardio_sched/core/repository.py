"""CRUD repositories for the scheduling schema."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.core.models import (
    ChangeHistory,
    DayMetadata,
    HolidayRow,
    Provider,
    ProviderAvailabilityRule,
    ProviderLeave,
    ScheduleAssignment,
    ScheduleTemplate,
    Service,
    TemplateAssignment,
)


class ProviderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Provider:
        provider = Provider(**kwargs)
        self.session.add(provider)
        await self.session.flush()
        return provider

    async def get_by_id(self, provider_id: uuid.UUID) -> Optional[Provider]:
        return await self.session.get(Provider, provider_id)

    async def get_by_initials(self, initials: str) -> Optional[Provider]:
        result = await self.session.execute(select(Provider).where(Provider.initials == initials))
        return result.scalar_one_or_none()

    async def list(self, active_only: bool = True) -> Sequence[Provider]:
        stmt = select(Provider)
        if active_only:
            stmt = stmt.where(Provider.active.is_(True))
        result = await self.session.execute(stmt.order_by(Provider.name))
        return result.scalars().all()


class ServiceRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> Service:
        service = Service(**kwargs)
        self.session.add(service)
        await self.session.flush()
        return service

    async def get_by_id(self, service_id: uuid.UUID) -> Optional[Service]:
        return await self.session.get(Service, service_id)

    async def get_by_name(self, name: str) -> Optional[Service]:
        result = await self.session.execute(select(Service).where(Service.name == name))
        return result.scalar_one_or_none()

    async def list(self) -> Sequence[Service]:
        result = await self.session.execute(select(Service).order_by(Service.name))
        return result.scalars().all()


class AssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ScheduleAssignment:
        assignment = ScheduleAssignment(**kwargs)
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def get_by_id(self, assignment_id: uuid.UUID) -> Optional[ScheduleAssignment]:
        return await self.session.get(ScheduleAssignment, assignment_id)

    async def list_by_date_range(self, start: date, end: date) -> Sequence[ScheduleAssignment]:
        stmt = (
            select(ScheduleAssignment)
            .where(ScheduleAssignment.date >= start, ScheduleAssignment.date <= end)
            .order_by(ScheduleAssignment.date, ScheduleAssignment.time_block)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_provider_range(
        self, provider_id: uuid.UUID, start: date, end: date
    ) -> Sequence[ScheduleAssignment]:
        stmt = (
            select(ScheduleAssignment)
            .where(
                ScheduleAssignment.provider_id == provider_id,
                ScheduleAssignment.date >= start,
                ScheduleAssignment.date <= end,
            )
            .order_by(ScheduleAssignment.date)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_provider_date(self, provider_id: uuid.UUID, day: date) -> Sequence[ScheduleAssignment]:
        return await self.list_by_provider_range(provider_id, day, day)

    async def list_cell(self, service_id: uuid.UUID, day: date, time_block: str) -> Sequence[ScheduleAssignment]:
        stmt = select(ScheduleAssignment).where(
            ScheduleAssignment.service_id == service_id,
            ScheduleAssignment.date == day,
            ScheduleAssignment.time_block == time_block,
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def list_by_ids(self, ids: Sequence[uuid.UUID]) -> Sequence[ScheduleAssignment]:
        if not ids:
            return []
        result = await self.session.execute(
            select(ScheduleAssignment).where(ScheduleAssignment.id.in_(ids))
        )
        return result.scalars().all()

    async def update(self, assignment_id: uuid.UUID, **kwargs) -> Optional[ScheduleAssignment]:
        assignment = await self.get_by_id(assignment_id)
        if not assignment:
            return None
        for k, v in kwargs.items():
            if v is not None:
                setattr(assignment, k, v)
        await self.session.flush()
        return assignment

    async def delete(self, assignment_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(ScheduleAssignment).where(ScheduleAssignment.id == assignment_id)
        )
        return result.rowcount > 0


class AvailabilityRuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ProviderAvailabilityRule:
        rule = ProviderAvailabilityRule(**kwargs)
        self.session.add(rule)
        await self.session.flush()
        return rule

    async def list(self, provider_ids: Sequence[uuid.UUID] | None = None) -> Sequence[ProviderAvailabilityRule]:
        stmt = select(ProviderAvailabilityRule)
        if provider_ids is not None:
            stmt = stmt.where(ProviderAvailabilityRule.provider_id.in_(provider_ids))
        stmt = stmt.order_by(ProviderAvailabilityRule.provider_id, ProviderAvailabilityRule.day_of_week)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete(self, rule_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(ProviderAvailabilityRule).where(ProviderAvailabilityRule.id == rule_id)
        )
        return result.rowcount > 0


class LeaveRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ProviderLeave:
        leave = ProviderLeave(**kwargs)
        self.session.add(leave)
        await self.session.flush()
        return leave

    async def list_overlapping(
        self, start: date, end: date, provider_id: uuid.UUID | None = None
    ) -> Sequence[ProviderLeave]:
        """Leaves that touch [start, end] at all."""
        stmt = select(ProviderLeave).where(
            ProviderLeave.start_date <= end, ProviderLeave.end_date >= start
        )
        if provider_id is not None:
            stmt = stmt.where(ProviderLeave.provider_id == provider_id)
        result = await self.session.execute(stmt.order_by(ProviderLeave.start_date))
        return result.scalars().all()

    async def delete(self, leave_id: uuid.UUID) -> bool:
        result = await self.session.execute(delete(ProviderLeave).where(ProviderLeave.id == leave_id))
        return result.rowcount > 0


class HolidayRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> HolidayRow:
        holiday = HolidayRow(**kwargs)
        self.session.add(holiday)
        await self.session.flush()
        return holiday

    async def list(self) -> Sequence[HolidayRow]:
        result = await self.session.execute(select(HolidayRow).order_by(HolidayRow.date))
        return result.scalars().all()


class DayMetadataRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, day: date, time_block: str) -> Optional[DayMetadata]:
        result = await self.session.execute(
            select(DayMetadata).where(DayMetadata.date == day, DayMetadata.time_block == time_block)
        )
        return result.scalar_one_or_none()

    async def upsert(self, day: date, time_block: str, **fields) -> DayMetadata:
        row = await self.get(day, time_block)
        if row is None:
            row = DayMetadata(date=day, time_block=time_block, **fields)
            self.session.add(row)
        else:
            for k, v in fields.items():
                setattr(row, k, v)
        await self.session.flush()
        return row

    async def list_by_date_range(self, start: date, end: date) -> Sequence[DayMetadata]:
        stmt = (
            select(DayMetadata)
            .where(DayMetadata.date >= start, DayMetadata.date <= end)
            .order_by(DayMetadata.date, DayMetadata.time_block)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class TemplateRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, entries: Sequence[dict] = (), **kwargs) -> ScheduleTemplate:
        template = ScheduleTemplate(**kwargs)
        template.entries = [TemplateAssignment(**e) for e in entries]
        self.session.add(template)
        await self.session.flush()
        return template

    async def get_by_id(self, template_id: uuid.UUID) -> Optional[ScheduleTemplate]:
        return await self.session.get(ScheduleTemplate, template_id)

    async def list(self) -> Sequence[ScheduleTemplate]:
        result = await self.session.execute(select(ScheduleTemplate).order_by(ScheduleTemplate.name))
        return result.scalars().all()

    async def delete(self, template_id: uuid.UUID) -> bool:
        template = await self.get_by_id(template_id)
        if template is None:
            return False
        await self.session.delete(template)
        await self.session.flush()
        return True


class ChangeHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **kwargs) -> ChangeHistory:
        record = ChangeHistory(**kwargs)
        self.session.add(record)
        await self.session.flush()
        return record

    async def get_by_id(self, record_id: uuid.UUID) -> Optional[ChangeHistory]:
        return await self.session.get(ChangeHistory, record_id)

    async def list_recent(self, limit: int = 20, since: datetime | None = None) -> Sequence[ChangeHistory]:
        stmt = select(ChangeHistory)
        if since is not None:
            stmt = stmt.where(ChangeHistory.created_at >= since)
        stmt = stmt.order_by(ChangeHistory.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return result.scalars().all()
