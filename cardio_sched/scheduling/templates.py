"""Template expansion planner.

Planning is pure: given the live assignments in the range and the conflict
policy it decides which rows to delete and create and accounts for every
template slot exactly once (created, skipped, PTO conflict or holiday
conflict). The service layer executes the plan through the step log.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

from cardio_sched.scheduling.availability import evaluate_on
from cardio_sched.scheduling.calendar import HolidayCalendar, date_range, day_of_week, week_start
from cardio_sched.scheduling.conflicts import has_pto_for_slot, is_pto_service
from cardio_sched.scheduling.exceptions import ScheduleValidationError
from cardio_sched.scheduling.models import (
    ApplyOptions,
    AssignmentInfo,
    AvailabilityRuleInfo,
    AvailabilityViolation,
    Enforcement,
    HolidayConflict,
    LeaveInfo,
    ProviderInfo,
    PTOConflict,
    ServiceInfo,
    TemplateApplyResult,
    TemplateEntry,
    TemplateInfo,
    TimeBlock,
    WeekApplication,
)

logger = logging.getLogger(__name__)

CellKey = tuple[str, date, TimeBlock]


def validate_range(start: date, end: date) -> None:
    if end < start:
        raise ScheduleValidationError(
            f"end date {end.isoformat()} is before start date {start.isoformat()}"
        )


def validate_alternating(template_count: int, pattern: Sequence[int]) -> None:
    """Reject a rotation before anything is touched."""
    if template_count < 2:
        raise ScheduleValidationError("At least 2 templates are required for alternating")
    if not pattern:
        raise ScheduleValidationError("Pattern array is required (e.g., [0, 1] for A-B-A-B)")
    for idx in pattern:
        if idx < 0 or idx >= template_count:
            raise ScheduleValidationError(
                f"Pattern index {idx} is out of range (0-{template_count - 1})"
            )


def iter_weeks(start: date, end: date) -> Iterator[tuple[date, list[date]]]:
    """Sunday-aligned weeks touching [start, end], each with its in-range dates."""
    current = week_start(start)
    while current <= end:
        days = [current + timedelta(days=i) for i in range(7)]
        yield current, [d for d in days if start <= d <= end]
        current += timedelta(days=7)


@dataclass
class TemplatePlan:
    creates: list[AssignmentInfo] = field(default_factory=list)
    deletes: list[AssignmentInfo] = field(default_factory=list)
    skipped: int = 0
    slots_attempted: int = 0
    pto_conflicts: list[PTOConflict] = field(default_factory=list)
    holiday_conflicts: list[HolidayConflict] = field(default_factory=list)
    availability_blocks: list[AvailabilityViolation] = field(default_factory=list)
    availability_warnings: list[AvailabilityViolation] = field(default_factory=list)
    week_applications: list[WeekApplication] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.creates and not self.deletes

    def to_result(self, created: int | None = None, failed: int = 0) -> TemplateApplyResult:
        return TemplateApplyResult(
            created=len(self.creates) if created is None else created,
            skipped=self.skipped,
            failed=failed,
            slots_attempted=self.slots_attempted,
            pto_conflicts=self.pto_conflicts,
            holiday_conflicts=self.holiday_conflicts,
            availability_blocks=self.availability_blocks,
            availability_warnings=self.availability_warnings,
            week_applications=self.week_applications,
        )


class TemplatePlanner:
    """Accumulates one plan across any number of template/date applications."""

    def __init__(
        self,
        *,
        existing: Sequence[AssignmentInfo],
        providers: Mapping[str, ProviderInfo],
        services: Mapping[str, ServiceInfo],
        leaves: Sequence[LeaveInfo] = (),
        rules: Sequence[AvailabilityRuleInfo] = (),
        holidays: HolidayCalendar | None = None,
        options: ApplyOptions | None = None,
    ) -> None:
        self.providers = providers
        self.services = services
        self.leaves = leaves
        self.rules = rules
        self.holidays = holidays or HolidayCalendar()
        self.options = options or ApplyOptions()
        self.plan = TemplatePlan()

        # PTO lookups see the range as it was before this operation.
        self._pto_rows = [a for a in existing if a.is_pto or is_pto_service(services.get(a.service_id))]
        self._pre_existing: dict[CellKey, list[AssignmentInfo]] = {}
        for row in existing:
            self._pre_existing.setdefault(self._key(row), []).append(row)
        self._cleared: set[CellKey] = set()
        self._live = {k: list(v) for k, v in self._pre_existing.items()}

    @staticmethod
    def _key(row: AssignmentInfo | TemplateEntry, day: date | None = None) -> CellKey:
        return (row.service_id, day or row.date, TimeBlock(row.time_block))

    def _violation(self, entry: TemplateEntry, day: date, enforcement: Enforcement, reason) -> AvailabilityViolation:
        provider = self.providers.get(entry.provider_id)
        service = self.services.get(entry.service_id)
        return AvailabilityViolation(
            provider_id=entry.provider_id,
            provider_initials=provider.initials if provider else "Unknown",
            service_id=entry.service_id,
            service_name=service.name if service else "Unknown",
            date=day,
            time_block=entry.time_block,
            enforcement=enforcement,
            reason=reason,
        )

    def apply_entry(self, entry: TemplateEntry, day: date) -> None:
        plan = self.plan
        plan.slots_attempted += 1
        service = self.services.get(entry.service_id)
        service_name = service.name if service else "Unknown"
        block = TimeBlock(entry.time_block)

        holiday = self.holidays.blocks_service(day, service_name)
        if holiday is not None:
            plan.holiday_conflicts.append(
                HolidayConflict(
                    date=day,
                    holiday_name=holiday.name,
                    service_id=entry.service_id,
                    service_name=service_name,
                )
            )
            return

        is_pto = entry.is_pto or is_pto_service(service)
        if not is_pto and has_pto_for_slot(
            self._pto_rows, self.leaves, entry.provider_id, day, block, self.services
        ):
            provider = self.providers.get(entry.provider_id)
            plan.pto_conflicts.append(
                PTOConflict(
                    provider_id=entry.provider_id,
                    provider_name=provider.display_name if provider else None,
                    date=day,
                    time_block=block,
                    intended_service_id=entry.service_id,
                    intended_service_name=service.name if service else None,
                )
            )
            return

        availability = evaluate_on(self.rules, entry.provider_id, entry.service_id, day, block)
        if availability.enforcement is Enforcement.HARD:
            plan.availability_blocks.append(
                self._violation(entry, day, Enforcement.HARD, availability.reason)
            )
            plan.skipped += 1
            return

        key = self._key(entry, day)
        pre_existing = self._pre_existing.get(key, [])
        if self.options.clear_existing:
            if key not in self._cleared:
                self._cleared.add(key)
                plan.deletes.extend(pre_existing)
                self._live[key] = [r for r in self._live.get(key, []) if r not in pre_existing]
        elif self.options.skip_conflicts and pre_existing:
            plan.skipped += 1
            return

        if any(r.provider_id == entry.provider_id for r in self._live.get(key, [])):
            plan.skipped += 1
            return

        row = AssignmentInfo(
            provider_id=entry.provider_id,
            service_id=entry.service_id,
            date=day,
            time_block=block,
            room_count=entry.room_count,
            is_pto=entry.is_pto,
            notes=entry.notes,
        )
        plan.creates.append(row)
        self._live.setdefault(key, []).append(row)
        if availability.enforcement is Enforcement.WARN:
            plan.availability_warnings.append(
                self._violation(entry, day, Enforcement.WARN, availability.reason)
            )

    def apply_dates(self, template: TemplateInfo, days: Iterable[date]) -> None:
        by_day: dict[int, list[TemplateEntry]] = {}
        for entry in template.entries:
            by_day.setdefault(entry.day_of_week, []).append(entry)
        for day in days:
            for entry in by_day.get(day_of_week(day), []):
                self.apply_entry(entry, day)


def plan_template(
    template: TemplateInfo,
    start: date,
    end: date,
    **context,
) -> TemplatePlan:
    """Plan a single template over every date in [start, end]."""
    validate_range(start, end)
    planner = TemplatePlanner(**context)
    planner.apply_dates(template, date_range(start, end))
    logger.debug(
        "Planned template %s: %d creates, %d deletes", template.name,
        len(planner.plan.creates), len(planner.plan.deletes),
    )
    return planner.plan


def plan_alternating(
    templates: Sequence[TemplateInfo],
    pattern: Sequence[int],
    start: date,
    end: date,
    **context,
) -> TemplatePlan:
    """Plan a rotation: week k uses ``templates[pattern[k % len(pattern)]]``."""
    validate_alternating(len(templates), pattern)
    validate_range(start, end)
    planner = TemplatePlanner(**context)
    for k, (sunday, days) in enumerate(iter_weeks(start, end)):
        template = templates[pattern[k % len(pattern)]]
        planner.plan.week_applications.append(
            WeekApplication(week_start=sunday, template_id=template.id, template_name=template.name)
        )
        planner.apply_dates(template, days)
    return planner.plan
