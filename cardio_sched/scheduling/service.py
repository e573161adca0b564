"""Scheduling service: validates, mutates and records schedule changes.

Every method loads what it needs from the database, hands it to the pure
engine modules and, for mutations, writes through the step log.
"""

import logging
from collections.abc import Sequence
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.config import Settings, get_settings
from cardio_sched.core.repository import (
    AssignmentRepository,
    ProviderRepository,
    ServiceRepository,
    TemplateRepository,
)
from cardio_sched.scheduling import availability, capacity
from cardio_sched.scheduling.calendar import DAY_NAMES, HolidayCalendar, date_range, day_of_week, week_start
from cardio_sched.scheduling.conflicts import (
    OverrideSession,
    find_conflicts,
    get_pto_time_blocks,
    is_on_leave,
    is_pto_service,
    validate_placement,
)
from cardio_sched.scheduling.exceptions import (
    NotFoundError,
    PolicyConflictError,
    ScheduleValidationError,
)
from cardio_sched.scheduling.history import ChangeHistoryManager
from cardio_sched.scheduling.models import (
    ApplyOptions,
    AssignmentInfo,
    AvailabilityResult,
    BulkAction,
    BulkAvailabilityResult,
    BulkPattern,
    BulkPatternType,
    BulkProviderResult,
    CoverageGap,
    CoverageSuggestionResult,
    OperationType,
    PlacementCheck,
    ProviderInfo,
    RoomCapacity,
    RoomSuggestionResult,
    ServiceInfo,
    TemplateApplyResult,
    TemplateInfo,
    TemplateType,
    TimeBlock,
)
from cardio_sched.scheduling.snapshot import (
    ScheduleSnapshot,
    SessionScheduleWriter,
    as_uuid,
    assignment_info,
    load_holidays,
    load_snapshot,
    provider_info,
    service_info,
    template_info,
)
from cardio_sched.scheduling.steps import ScheduleWriter, Step, StepKind, StepLog, StepStatus, run_steps
from cardio_sched.scheduling.templates import (
    TemplatePlan,
    plan_alternating,
    plan_template,
    validate_alternating,
    validate_range,
)

logger = logging.getLogger(__name__)


def _parse_id(kind: str, value: str):
    try:
        return as_uuid(value)
    except ValueError:
        raise NotFoundError(kind, value)


class SchedulingService:
    """Database-backed entry point for every scheduling operation."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        holidays: HolidayCalendar | None = None,
        writer: ScheduleWriter | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.policy = capacity.CapacityPolicy.from_settings(self.settings)
        self.writer = writer or SessionScheduleWriter(session)
        self.history = ChangeHistoryManager(session, self.writer)
        self.assignments = AssignmentRepository(session)
        self.providers = ProviderRepository(session)
        self.services = ServiceRepository(session)
        self.templates = TemplateRepository(session)
        self._holidays = holidays

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def holidays(self) -> HolidayCalendar:
        if self._holidays is None:
            self._holidays = await load_holidays(self.session, self.settings.inpatient_services)
        return self._holidays

    async def snapshot(self, start: date, end: date) -> ScheduleSnapshot:
        return await load_snapshot(self.session, start, end, await self.holidays())

    async def get_provider(self, provider_id: str) -> ProviderInfo:
        row = await self.providers.get_by_id(_parse_id("Provider", provider_id))
        if row is None:
            raise NotFoundError("Provider", provider_id)
        return provider_info(row)

    async def get_service(self, service_id: str) -> ServiceInfo:
        row = await self.services.get_by_id(_parse_id("Service", service_id))
        if row is None:
            raise NotFoundError("Service", service_id)
        return service_info(row)

    async def get_template(self, template_id: str) -> TemplateInfo:
        row = await self.templates.get_by_id(_parse_id("Template", template_id))
        if row is None:
            raise NotFoundError("Template", template_id)
        return template_info(row)

    async def list_templates(self) -> list[TemplateInfo]:
        return [template_info(t) for t in await self.templates.list()]

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def check_availability(
        self, provider_id: str, service_id: str, day: date, time_block: TimeBlock
    ) -> AvailabilityResult:
        snap = await self.snapshot(day, day)
        return availability.evaluate_on(snap.rules, provider_id, service_id, day, time_block)

    async def check_bulk_availability(self, proposals: Sequence[AssignmentInfo]) -> BulkAvailabilityResult:
        if not proposals:
            return BulkAvailabilityResult()
        days = [p.date for p in proposals]
        snap = await self.snapshot(min(days), max(days))
        return availability.check_bulk(snap.rules, proposals, snap.provider_map, snap.service_map)

    # ------------------------------------------------------------------
    # Direct placement
    # ------------------------------------------------------------------

    async def validate_assignment(
        self,
        proposal: AssignmentInfo,
        *,
        override: bool = False,
        override_session: OverrideSession | None = None,
        acknowledge_warnings: bool = False,
        ignore_id: Optional[str] = None,
    ) -> PlacementCheck:
        provider = await self.get_provider(proposal.provider_id)
        service = await self.get_service(proposal.service_id)
        snap = await self.snapshot(proposal.date, proposal.date)
        existing = [a for a in snap.assignments if a.id != ignore_id]
        return validate_placement(
            proposal,
            provider=provider,
            service=service,
            existing=existing,
            services=snap.service_map,
            leaves=snap.leaves,
            rules=snap.rules,
            holidays=snap.holidays,
            override=override,
            session=override_session,
            acknowledge_warnings=acknowledge_warnings,
        )

    @staticmethod
    def _raise_for(check: PlacementCheck) -> None:
        if check.allowed:
            return
        raise PolicyConflictError(
            check.reason or "Placement rejected",
            code=check.code,
            details={
                "requires_override": check.requires_override,
                "requires_acknowledgement": check.requires_acknowledgement,
                "enforcement": check.availability.enforcement.value
                if check.availability and check.availability.enforcement
                else None,
                "conflicts": [c.model_dump(mode="json") for c in check.conflicts],
            },
        )

    async def create_assignment(
        self,
        proposal: AssignmentInfo,
        *,
        override: bool = False,
        override_session: OverrideSession | None = None,
        acknowledge_warnings: bool = False,
    ) -> tuple[AssignmentInfo, PlacementCheck]:
        """Place one provider, rejecting policy conflicts with PolicyConflictError."""
        provider = await self.get_provider(proposal.provider_id)
        service = await self.get_service(proposal.service_id)
        updates = {}
        if service.requires_rooms and not proposal.room_count:
            updates["room_count"] = provider.default_room_count
        if is_pto_service(service):
            updates["is_pto"] = True
        if updates:
            proposal = proposal.model_copy(update=updates)

        check = await self.validate_assignment(
            proposal,
            override=override,
            override_session=override_session,
            acknowledge_warnings=acknowledge_warnings,
        )
        self._raise_for(check)

        try:
            row = await self.assignments.create(
                provider_id=as_uuid(proposal.provider_id),
                service_id=as_uuid(proposal.service_id),
                date=proposal.date,
                time_block=proposal.time_block.value,
                room_count=proposal.room_count,
                is_pto=proposal.is_pto,
                is_covering=proposal.is_covering,
                notes=proposal.notes,
            )
        except IntegrityError as e:
            await self._slot_taken(e)
        logger.info(
            "Assigned %s to %s on %s %s", provider.initials, service.name,
            proposal.date, proposal.time_block.value,
        )
        return assignment_info(row), check

    async def patch_assignment(
        self,
        assignment_id: str,
        *,
        time_block: Optional[TimeBlock] = None,
        room_count: Optional[int] = None,
        notes: Optional[str] = None,
        is_covering: Optional[bool] = None,
        override: bool = False,
        override_session: OverrideSession | None = None,
        acknowledge_warnings: bool = False,
    ) -> AssignmentInfo:
        """Patch the mutable fields of an assignment. Identity fields never change."""
        row = await self.assignments.get_by_id(_parse_id("Assignment", assignment_id))
        if row is None:
            raise NotFoundError("Assignment", assignment_id)
        current = assignment_info(row)
        if time_block is not None and TimeBlock(time_block) is not current.time_block:
            check = await self.validate_assignment(
                current.model_copy(update={"time_block": TimeBlock(time_block)}),
                override=override,
                override_session=override_session,
                acknowledge_warnings=acknowledge_warnings,
                ignore_id=current.id,
            )
            self._raise_for(check)
        if room_count is not None and room_count < 0:
            raise ScheduleValidationError("room_count must not be negative")
        try:
            row = await self.assignments.update(
                row.id,
                time_block=TimeBlock(time_block).value if time_block is not None else None,
                room_count=room_count,
                notes=notes,
                is_covering=is_covering,
            )
        except IntegrityError as e:
            await self._slot_taken(e)
        return assignment_info(row)

    async def _slot_taken(self, exc: IntegrityError):
        await self.session.rollback()
        logger.warning("Assignment write rejected by the database: %s", exc.orig)
        raise PolicyConflictError(
            "The provider already holds this service and time block", code="slot_taken"
        ) from exc

    async def delete_assignment(self, assignment_id: str) -> None:
        if not await self.assignments.delete(_parse_id("Assignment", assignment_id)):
            raise NotFoundError("Assignment", assignment_id)

    async def find_pto_conflicts(self, provider_id: str, day: date) -> list[AssignmentInfo]:
        """Work that overlaps the provider's PTO (or leave) on ``day``."""
        snap = await self.snapshot(day, day)
        services = snap.service_map
        blocks = get_pto_time_blocks(snap.assignments, provider_id, day, services)
        if is_on_leave(snap.leaves, provider_id, day):
            blocks.add(TimeBlock.BOTH)
        return find_conflicts(snap.assignments, provider_id, day, blocks, services)

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _execute(
        self,
        deletes: Sequence[AssignmentInfo],
        creates: Sequence[AssignmentInfo],
        operation_type: OperationType,
        description: str,
        start: date,
        end: date,
        metadata: dict,
    ) -> tuple[StepLog, Optional[str]]:
        """Run deletes then creates, one committed step at a time, under a history record."""
        if not deletes and not creates:
            return StepLog(), None
        record = await self.history.begin(operation_type, description, start, end, metadata)
        log = StepLog.build(deletes, creates)

        async def on_step(step: Step) -> None:
            await self.history.sync(record, log)

        await run_steps(log, self.writer, on_step=on_step)
        await self.history.finish(record, log)
        if log.failed:
            logger.warning("%s finished with %d failed step(s)", operation_type.value, len(log.failed))
        return log, str(record.id)

    @staticmethod
    def _failed_creates(log: StepLog) -> int:
        return sum(1 for s in log.steps if s.kind == StepKind.CREATE and s.status == StepStatus.FAILED)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _plan_context(self, snap: ScheduleSnapshot, options: ApplyOptions) -> dict:
        return dict(
            existing=snap.assignments,
            providers=snap.provider_map,
            services=snap.service_map,
            leaves=snap.leaves,
            rules=snap.rules,
            holidays=snap.holidays,
            options=options,
        )

    async def _run_plan(
        self,
        plan: TemplatePlan,
        operation_type: OperationType,
        description: str,
        start: date,
        end: date,
        metadata: dict,
    ) -> TemplateApplyResult:
        metadata = {
            **metadata,
            "pto_conflicts_count": len(plan.pto_conflicts),
            "holiday_conflicts_count": len(plan.holiday_conflicts),
            "availability_warnings_count": len(plan.availability_warnings),
        }
        log, history_id = await self._execute(
            plan.deletes, plan.creates, operation_type, description, start, end, metadata
        )
        result = plan.to_result(created=len(log.created), failed=self._failed_creates(log))
        result.history_id = history_id
        return result

    async def apply_template(
        self,
        template_id: str,
        start: date,
        end: date,
        options: ApplyOptions | None = None,
    ) -> TemplateApplyResult:
        options = options or ApplyOptions()
        validate_range(start, end)
        template = await self.get_template(template_id)
        snap = await self.snapshot(start, end)
        plan = plan_template(template, start, end, **self._plan_context(snap, options))
        result = await self._run_plan(
            plan,
            OperationType.TEMPLATE_APPLY,
            f'Applied template "{template.name}" to {start.isoformat()} - {end.isoformat()}',
            start,
            end,
            {
                "template_id": template.id,
                "template_name": template.name,
                "clear_existing": options.clear_existing,
                "skip_conflicts": options.skip_conflicts,
            },
        )
        logger.info(
            "Template %s applied %s..%s: %d created, %d skipped",
            template.name, start, end, result.created, result.skipped,
        )
        return result

    async def apply_alternating(
        self,
        template_ids: Sequence[str],
        pattern: Sequence[int],
        start: date,
        end: date,
        options: ApplyOptions | None = None,
    ) -> TemplateApplyResult:
        options = options or ApplyOptions()
        validate_alternating(len(template_ids), pattern)
        validate_range(start, end)
        templates = [await self.get_template(t) for t in template_ids]
        snap = await self.snapshot(start, end)
        plan = plan_alternating(templates, pattern, start, end, **self._plan_context(snap, options))
        names = [t.name for t in templates]
        result = await self._run_plan(
            plan,
            OperationType.TEMPLATE_APPLY_ALTERNATING,
            f'Applied alternating "{" / ".join(names)}" to {start.isoformat()} - {end.isoformat()}',
            start,
            end,
            {
                "template_ids": [t.id for t in templates],
                "template_names": names,
                "pattern": list(pattern),
                "clear_existing": options.clear_existing,
                "skip_conflicts": options.skip_conflicts,
                "week_applications": [w.model_dump(mode="json") for w in plan.week_applications],
            },
        )
        logger.info(
            "Alternating %s applied %s..%s: %d created, %d skipped",
            names, start, end, result.created, result.skipped,
        )
        return result

    async def template_from_week(
        self,
        name: str,
        day_in_week: date,
        description: Optional[str] = None,
        template_type: TemplateType = TemplateType.WEEKLY,
    ) -> TemplateInfo:
        """Snapshot the Sunday-to-Saturday week containing ``day_in_week``."""
        if not name:
            raise ScheduleValidationError("Template name is required")
        sunday = week_start(day_in_week)
        saturday = sunday + timedelta(days=6)
        rows = await self.assignments.list_by_date_range(sunday, saturday)
        if not rows:
            raise ScheduleValidationError("No assignments found for this week")
        template = await self.templates.create(
            name=name,
            description=description or f"Created from week of {sunday.isoformat()}",
            type=TemplateType(template_type).value,
            entries=[
                dict(
                    day_of_week=day_of_week(r.date),
                    service_id=r.service_id,
                    provider_id=r.provider_id,
                    time_block=r.time_block,
                    room_count=r.room_count,
                    is_pto=r.is_pto,
                    notes=r.notes,
                )
                for r in rows
            ],
        )
        logger.info("Template %s created from week of %s (%d entries)", name, sunday, len(rows))
        return template_info(template)

    # ------------------------------------------------------------------
    # Bulk provider add / remove
    # ------------------------------------------------------------------

    async def bulk_provider(
        self,
        provider_id: str,
        action: BulkAction,
        start: date,
        end: date,
        pattern: BulkPattern | None = None,
        room_count: int = 0,
        preview: bool = False,
    ) -> BulkProviderResult:
        """Add or remove one provider across a date range.

        ``recurring`` restricts to one weekday. Adds fill empty cells only;
        removes honour the optional service and time block filters.
        """
        pattern = pattern or BulkPattern()
        action = BulkAction(action)
        validate_range(start, end)
        if pattern.type == BulkPatternType.RECURRING and pattern.day_of_week is None:
            raise ScheduleValidationError("day_of_week is required for a recurring pattern")
        if action == BulkAction.ADD and not pattern.service_id:
            raise ScheduleValidationError("service_id is required for add")

        provider = await self.get_provider(provider_id)
        service = await self.get_service(pattern.service_id) if pattern.service_id else None

        def wanted(day: date) -> bool:
            return pattern.type == BulkPatternType.ALL or day_of_week(day) == pattern.day_of_week

        scope = (
            "all dates"
            if pattern.type == BulkPatternType.ALL
            else f"{DAY_NAMES[pattern.day_of_week][:3]} {pattern.time_block.value if pattern.time_block else 'all'}"
        )
        service_label = f" ({service.name})" if service else ""
        metadata = {
            "provider_id": provider.id,
            "provider_name": provider.name,
            "action": action.value,
            "pattern": pattern.model_dump(mode="json"),
            "service_name": service.name if service else None,
            "room_count": room_count,
        }

        if action == BulkAction.REMOVE:
            rows = await self.assignments.list_by_provider_range(as_uuid(provider.id), start, end)
            targets = [
                assignment_info(r)
                for r in rows
                if wanted(r.date)
                and (service is None or str(r.service_id) == service.id)
                and (pattern.time_block is None or r.time_block == pattern.time_block.value)
            ]
            if preview:
                return BulkProviderResult(
                    action=action, preview=True, affected_count=len(targets), assignments=targets,
                    message=f"{len(targets)} assignment(s) would be removed",
                )
            log, history_id = await self._execute(
                targets, [], OperationType.BULK_REMOVE,
                f"Removed {provider.display_name} from {scope}{service_label} "
                f"{start.isoformat()} - {end.isoformat()}",
                start, end, metadata,
            )
            removed = len(log.deleted)
            return BulkProviderResult(
                action=action,
                affected_count=removed,
                failed=len(log.failed),
                assignments=log.deleted,
                history_id=history_id,
                message=f"Removed {removed} assignment(s) for {provider.display_name}"
                if targets
                else "No matching assignments found to remove",
            )

        snap = await self.snapshot(start, end)
        blocks = [pattern.time_block] if pattern.time_block else [TimeBlock.AM, TimeBlock.PM]
        occupied = {(a.service_id, a.date, a.time_block) for a in snap.assignments}
        creates: list[AssignmentInfo] = []
        skipped = 0
        for day in date_range(start, end):
            if not wanted(day):
                continue
            for block in blocks:
                if (service.id, day, block) in occupied:
                    skipped += 1
                    continue
                creates.append(
                    AssignmentInfo(
                        provider_id=provider.id,
                        service_id=service.id,
                        date=day,
                        time_block=block,
                        room_count=room_count,
                    )
                )
        if preview:
            return BulkProviderResult(
                action=action, preview=True, affected_count=len(creates), skipped=skipped,
                assignments=creates, message=f"{len(creates)} assignment(s) would be added",
            )
        log, history_id = await self._execute(
            [], creates, OperationType.BULK_ADD,
            f"Added {provider.display_name} to {service.name} {scope} "
            f"{start.isoformat()} - {end.isoformat()}",
            start, end, {**metadata, "service_id": service.id},
        )
        added = len(log.created)
        return BulkProviderResult(
            action=action,
            affected_count=added,
            skipped=skipped,
            failed=len(log.failed),
            assignments=log.created,
            history_id=history_id,
            message=f"Added {added} assignment(s) for {provider.display_name}"
            if creates
            else "No new assignments created (all slots already filled)",
        )

    # ------------------------------------------------------------------
    # Rooms & coverage
    # ------------------------------------------------------------------

    async def room_capacity(self, day: date, time_block: TimeBlock) -> RoomCapacity:
        snap = await self.snapshot(day, day)
        return capacity.room_capacity(snap.assignments, snap.service_map, day, time_block, self.policy)

    async def compute_room_suggestions(
        self,
        day: date,
        time_block: TimeBlock,
        assigned_provider_ids: Sequence[str] = (),
    ) -> RoomSuggestionResult:
        snap = await self.snapshot(day, day)
        return capacity.compute_room_suggestions(
            day,
            time_block,
            assigned_provider_ids,
            providers=snap.providers,
            services=snap.service_map,
            assignments=snap.assignments,
            leaves=snap.leaves,
            rules=snap.rules,
            policy=self.policy,
        )

    async def compute_coverage_suggestions(
        self, service_id: str, day: date, time_block: TimeBlock
    ) -> CoverageSuggestionResult:
        service = await self.get_service(service_id)
        snap = await self.snapshot(day, day)
        return capacity.compute_coverage_suggestions(
            service,
            day,
            time_block,
            providers=snap.providers,
            assignments=snap.assignments,
            leaves=snap.leaves,
            rules=snap.rules,
        )

    async def coverage_gaps(self, start: date, end: date) -> list[CoverageGap]:
        validate_range(start, end)
        snap = await self.snapshot(start, end)
        return capacity.find_coverage_gaps(
            start,
            end,
            services=snap.services,
            assignments=snap.assignments,
            providers=snap.providers,
            holidays=snap.holidays,
        )
