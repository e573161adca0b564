"""SQLAlchemy 2.0 async models for the scheduling schema."""

from __future__ import annotations

import datetime as dt
import uuid
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.types import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Base(DeclarativeBase):
    pass


class Provider(Base):
    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    initials: Mapped[str] = mapped_column(String(10), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="attending")
    email: Mapped[str | None] = mapped_column(String(255))
    capabilities: Mapped[list | None] = mapped_column(JSON, default=list)
    default_room_count: Mapped[int] = mapped_column(Integer, default=0)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_providers_initials", "initials", unique=True),
        Index("ix_providers_active", "active"),
    )


class Service(Base):
    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    time_block: Mapped[str] = mapped_column(String(4), default="BOTH")
    requires_rooms: Mapped[bool] = mapped_column(Boolean, default=False)
    required_capability: Mapped[str | None] = mapped_column(String(100))
    show_on_main_calendar: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ScheduleAssignment(Base):
    __tablename__ = "schedule_assignments"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    provider_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    room_count: Mapped[int] = mapped_column(Integer, default=0)
    is_pto: Mapped[bool] = mapped_column(Boolean, default=False)
    is_covering: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_schedule_assignments_date", "date"),
        Index("ix_schedule_assignments_provider_date", "provider_id", "date"),
        Index("ix_schedule_assignments_cell", "service_id", "date", "time_block"),
        UniqueConstraint(
            "provider_id", "service_id", "date", "time_block", name="uq_schedule_assignments_slot"
        ),
    )


class ProviderAvailabilityRule(Base):
    __tablename__ = "provider_availability_rules"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    provider_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[uuid.UUID | None] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"))
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0=Sunday
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(10), nullable=False)
    enforcement: Mapped[str] = mapped_column(String(10), default="hard")
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_availability_rules_provider_id", "provider_id"),
    )


class ProviderLeave(Base):
    __tablename__ = "provider_leaves"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    provider_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    leave_type: Mapped[str] = mapped_column(String(20), default="other")
    reason: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_provider_leaves_provider_id", "provider_id"),
        Index("ix_provider_leaves_range", "start_date", "end_date"),
    )


class DayMetadata(Base):
    __tablename__ = "day_metadata"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)  # AM, PM or DAY
    chp_room_in_use: Mapped[bool] = mapped_column(Boolean, default=False)
    chp_room_note: Mapped[str | None] = mapped_column(Text)
    extra_room_available: Mapped[bool] = mapped_column(Boolean, default=False)
    extra_room_note: Mapped[str | None] = mapped_column(Text)
    day_note: Mapped[str | None] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("date", "time_block", name="uq_day_metadata_date_block"),
    )


class HolidayRow(Base):
    """Organisation-specific closure on top of the computed federal holidays."""

    __tablename__ = "holidays"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class ScheduleTemplate(Base):
    __tablename__ = "schedule_templates"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), default="weekly")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    entries: Mapped[list[TemplateAssignment]] = relationship(
        back_populates="template", lazy="selectin", cascade="all, delete-orphan"
    )


class TemplateAssignment(Base):
    __tablename__ = "template_assignments"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    template_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("schedule_templates.id", ondelete="CASCADE"), nullable=False)
    provider_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), nullable=False)
    service_id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    time_block: Mapped[str] = mapped_column(String(4), nullable=False)
    room_count: Mapped[int] = mapped_column(Integer, default=0)
    is_pto: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    template: Mapped[ScheduleTemplate] = relationship(back_populates="entries")

    __table_args__ = (
        Index("ix_template_assignments_template_id", "template_id"),
    )


class ChangeHistory(Base):
    """One invertible bulk operation."""

    __tablename__ = "schedule_change_history"

    id: Mapped[uuid.UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=_new_uuid)
    operation_type: Mapped[str] = mapped_column(String(40), nullable=False)
    operation_description: Mapped[str] = mapped_column(Text, nullable=False)
    affected_date_start: Mapped[date] = mapped_column(Date, nullable=False)
    affected_date_end: Mapped[date] = mapped_column(Date, nullable=False)
    deleted_assignments: Mapped[list | None] = mapped_column(JSON)
    created_assignment_ids: Mapped[list | None] = mapped_column(JSON)
    redo_assignments: Mapped[list | None] = mapped_column(JSON)
    post_state: Mapped[list | None] = mapped_column(JSON)
    step_log: Mapped[list | None] = mapped_column(JSON)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    is_undone: Mapped[bool] = mapped_column(Boolean, default=False)
    undone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_redone: Mapped[bool] = mapped_column(Boolean, default=False)
    redone_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_change_history_created_at", "created_at"),
    )
