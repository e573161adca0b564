"""Room capacity targets, room-fill suggestions and coverage suggestions."""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Optional

from cardio_sched.scheduling.availability import evaluate_on, strictest_block
from cardio_sched.scheduling.calendar import (
    THURSDAY,
    WEDNESDAY,
    HolidayCalendar,
    date_range,
    day_of_week,
    is_weekend,
)
from cardio_sched.scheduling.conflicts import has_pto_for_slot, is_on_leave
from cardio_sched.scheduling.exceptions import ScheduleValidationError
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    AvailabilityRuleInfo,
    CapacityZone,
    CoverageGap,
    CoverageSuggestion,
    CoverageSuggestionResult,
    Enforcement,
    LeaveInfo,
    ProviderInfo,
    ProviderRole,
    RoomCapacity,
    RoomSuggestion,
    RoomSuggestionResult,
    ServiceInfo,
    TimeBlock,
)

logger = logging.getLogger(__name__)

ROOMS_CAPABILITY = "Rooms"
PRECEPTING_SERVICE = "Precepting"

# A provider working any of these cannot also take rooms in the same slot.
ROOM_BLOCKING_SERVICES = ("Consults", "Burgundy", "Fourth Floor Echo Lab", "Offsites")

# Service name -> capabilities that qualify a provider to cover it.
COVERAGE_CAPABILITIES: dict[str, list[str]] = {
    "Consults": ["Inpatient"],
    "Burgundy": ["Inpatient"],
    "Fourth Floor Echo Lab": ["Fourth Floor Echo Lab", "Echo TTE"],
    "Echo TTE AM": ["Echo TTE"],
    "Echo TTE PM": ["Echo TTE"],
    "Stress Echo AM": ["Stress Echo"],
    "Stress Echo PM": ["Stress Echo"],
    "Nuclear Stress": ["Nuclear Stress", "Nuclear"],
    "Nuclear": ["Nuclear"],
    "Precepting": ["Precepting"],
}


@dataclass(frozen=True)
class CapacityPolicy:
    """Room targets. Wednesday and Thursday afternoons run extended hours."""

    target: int = 14
    extended_ceiling: int = 15
    understaffed_threshold: int = 12
    extended_days: tuple[int, ...] = (WEDNESDAY, THURSDAY)
    extended_block: TimeBlock = TimeBlock.PM

    @classmethod
    def from_settings(cls, settings) -> "CapacityPolicy":
        return cls(
            target=settings.room_target,
            extended_ceiling=settings.room_extended_ceiling,
            understaffed_threshold=settings.room_understaffed_threshold,
        )

    def target_for(self, day: date, time_block: TimeBlock) -> int:
        if time_block == self.extended_block and day_of_week(day) in self.extended_days:
            return self.extended_ceiling
        return self.target

    def classify(self, current: int, day: date, time_block: TimeBlock) -> CapacityZone:
        if is_weekend(day):
            return CapacityZone.NOT_APPLICABLE
        if current == 0:
            return CapacityZone.EMPTY
        if current < self.understaffed_threshold:
            return CapacityZone.UNDER
        if current <= self.target_for(day, time_block):
            return CapacityZone.OPTIMAL
        return CapacityZone.OVER


def _require_half_day(time_block: TimeBlock) -> TimeBlock:
    time_block = TimeBlock(time_block)
    if time_block is TimeBlock.BOTH:
        raise ScheduleValidationError("Room capacity is tracked per AM or PM block, not BOTH")
    return time_block


def is_rooms_service(service: Optional[ServiceInfo], time_block: TimeBlock) -> bool:
    if service is None:
        return False
    return service.name in (f"Rooms {TimeBlock(time_block).value}", "Rooms")


def _slot(
    assignments: Iterable[AssignmentInfo], day: date, time_block: TimeBlock
) -> list[AssignmentInfo]:
    return [a for a in assignments if a.date == day and TimeBlock(a.time_block).overlaps(time_block)]


def room_assignments(
    assignments: Iterable[AssignmentInfo],
    services: Mapping[str, ServiceInfo],
    day: date,
    time_block: TimeBlock,
) -> list[AssignmentInfo]:
    return [
        a for a in _slot(assignments, day, time_block)
        if is_rooms_service(services.get(a.service_id), time_block)
    ]


def room_capacity(
    assignments: Iterable[AssignmentInfo],
    services: Mapping[str, ServiceInfo],
    day: date,
    time_block: TimeBlock,
    policy: CapacityPolicy = CapacityPolicy(),
) -> RoomCapacity:
    time_block = _require_half_day(time_block)
    rows = room_assignments(assignments, services, day, time_block)
    current = sum(a.room_count for a in rows)
    target = policy.target_for(day, time_block)
    weekend = is_weekend(day)
    return RoomCapacity(
        date=day,
        time_block=time_block,
        current=current,
        target=target,
        needed=0 if weekend else max(target - current, 0),
        zone=policy.classify(current, day, time_block),
        provider_ids=[a.provider_id for a in rows],
    )


def _has_blocking_assignment(
    slot_rows: Iterable[AssignmentInfo], provider_id: str, services: Mapping[str, ServiceInfo]
) -> bool:
    for a in slot_rows:
        if a.provider_id != provider_id:
            continue
        service = services.get(a.service_id)
        if service is not None and service.name.startswith(ROOM_BLOCKING_SERVICES):
            return True
    return False


def compute_room_suggestions(
    day: date,
    time_block: TimeBlock,
    assigned_provider_ids: Iterable[str],
    *,
    providers: Sequence[ProviderInfo],
    services: Mapping[str, ServiceInfo],
    assignments: Sequence[AssignmentInfo],
    leaves: Sequence[LeaveInfo] = (),
    rules: Sequence[AvailabilityRuleInfo] = (),
    policy: CapacityPolicy = CapacityPolicy(),
) -> RoomSuggestionResult:
    """Rank providers who could fill the room gap for one slot.

    Unwarned providers come before warned ones, then larger default room
    counts first. When no fellow is in rooms the preceptor is freed up and
    goes to the front of the list.
    """
    capacity_block = _require_half_day(time_block)
    capacity = room_capacity(assignments, services, day, capacity_block, policy)
    provider_by_id = {p.id: p for p in providers}
    in_rooms = set(capacity.provider_ids)
    fellows_in_rooms = any(
        provider_by_id[pid].role == ProviderRole.FELLOW for pid in in_rooms if pid in provider_by_id
    )
    result = RoomSuggestionResult(
        date=day,
        time_block=capacity_block,
        needed=capacity.needed,
        target=capacity.target,
        current_rooms=capacity.current,
        zone=capacity.zone,
        fellows_in_rooms=fellows_in_rooms,
    )
    if capacity.needed <= 0:
        return result

    excluded = in_rooms | set(assigned_provider_ids)
    slot_rows = _slot(assignments, day, capacity_block)

    def candidate(provider: ProviderInfo, is_preceptor: bool = False) -> Optional[RoomSuggestion]:
        if has_pto_for_slot(assignments, leaves, provider.id, day, capacity_block, services):
            return None
        block = strictest_block(rules, provider.id, day, capacity_block)
        if block.enforcement is Enforcement.HARD:
            return None
        return RoomSuggestion(
            provider_id=provider.id,
            name=provider.name,
            initials=provider.initials,
            role=provider.role,
            default_room_count=provider.default_room_count,
            has_warning=block.enforcement is Enforcement.WARN,
            warning_reason=block.reason,
            is_preceptor=is_preceptor,
        )

    preceptor: Optional[RoomSuggestion] = None
    if not fellows_in_rooms:
        for a in slot_rows:
            service = services.get(a.service_id)
            if service is None or service.name != PRECEPTING_SERVICE or a.provider_id in excluded:
                continue
            provider = provider_by_id.get(a.provider_id)
            if provider is not None:
                preceptor = candidate(provider, is_preceptor=True)
            if preceptor is not None:
                break

    ranked: list[RoomSuggestion] = []
    for provider in providers:
        if ROOMS_CAPABILITY not in provider.capabilities or provider.id in excluded:
            continue
        if preceptor is not None and provider.id == preceptor.provider_id:
            continue
        if _has_blocking_assignment(slot_rows, provider.id, services):
            continue
        suggestion = candidate(provider)
        if suggestion is not None:
            ranked.append(suggestion)
    ranked.sort(key=lambda s: (s.has_warning, -s.default_room_count, s.name))

    if preceptor is not None:
        if preceptor.has_warning:
            # keep unwarned-before-warned: lead the warned group instead
            split = next((i for i, s in enumerate(ranked) if s.has_warning), len(ranked))
            ranked.insert(split, preceptor)
        else:
            ranked.insert(0, preceptor)

    result.suggestions = ranked
    logger.debug(
        "Room suggestions for %s %s: need %d, %d candidates",
        day, capacity_block.value, capacity.needed, len(ranked),
    )
    return result


# ---------------------------------------------------------------------------
# Coverage-required services
# ---------------------------------------------------------------------------


def required_capabilities(service: ServiceInfo) -> list[str]:
    if service.name in COVERAGE_CAPABILITIES:
        return list(COVERAGE_CAPABILITIES[service.name])
    return [service.required_capability] if service.required_capability else []


def compute_coverage_suggestions(
    service: ServiceInfo,
    day: date,
    time_block: TimeBlock,
    *,
    providers: Sequence[ProviderInfo],
    assignments: Sequence[AssignmentInfo],
    leaves: Sequence[LeaveInfo] = (),
    rules: Sequence[AvailabilityRuleInfo] = (),
) -> CoverageSuggestionResult:
    """Rank providers who could staff an uncovered service slot.

    Eligibility is strict: any assignment in the slot disqualifies.
    """
    time_block = TimeBlock(time_block)
    capabilities = required_capabilities(service)
    busy = {a.provider_id for a in _slot(assignments, day, time_block)}

    suggestions: list[CoverageSuggestion] = []
    for provider in providers:
        if capabilities and not set(capabilities) & set(provider.capabilities):
            continue
        if provider.id in busy or is_on_leave(leaves, provider.id, day):
            continue
        availability = evaluate_on(rules, provider.id, service.id, day, time_block)
        if availability.enforcement is Enforcement.HARD:
            continue
        suggestions.append(
            CoverageSuggestion(
                provider_id=provider.id,
                name=provider.name,
                initials=provider.initials,
                has_warning=availability.enforcement is Enforcement.WARN,
                warning_reason=availability.reason,
            )
        )
    suggestions.sort(key=lambda s: (s.has_warning, s.name.lower()))
    return CoverageSuggestionResult(
        service_id=service.id,
        service_name=service.name,
        date=day,
        time_block=time_block,
        required_capabilities=capabilities,
        suggestions=suggestions,
    )


def _service_blocks(service: ServiceInfo) -> list[TimeBlock]:
    if TimeBlock(service.time_block) is TimeBlock.BOTH:
        return [TimeBlock.AM, TimeBlock.PM]
    return [TimeBlock(service.time_block)]


def find_coverage_gaps(
    start: date,
    end: date,
    *,
    services: Sequence[ServiceInfo],
    assignments: Sequence[AssignmentInfo],
    providers: Sequence[ProviderInfo] = (),
    holidays: HolidayCalendar | None = None,
) -> list[CoverageGap]:
    """Weekday slots of coverage-required services with nobody assigned.

    Precepting only needs coverage while a fellow is in rooms. On holidays
    only inpatient services are expected to run.
    """
    if end < start:
        raise ScheduleValidationError("end date must not be before start date")
    service_map = {s.id: s for s in services}
    fellows = {p.id for p in providers if p.role == ProviderRole.FELLOW}
    tracked = [s for s in services if s.name in COVERAGE_CAPABILITIES]

    gaps: list[CoverageGap] = []
    for day in date_range(start, end):
        if is_weekend(day):
            continue
        for service in tracked:
            if holidays is not None and holidays.blocks_service(day, service.name):
                continue
            for block in _service_blocks(service):
                rows = _slot(assignments, day, block)
                if any(a.service_id == service.id for a in rows):
                    continue
                if service.name == PRECEPTING_SERVICE:
                    in_rooms = room_assignments(rows, service_map, day, block)
                    if not any(a.provider_id in fellows for a in in_rooms):
                        continue
                gaps.append(
                    CoverageGap(date=day, time_block=block, service_id=service.id, service_name=service.name)
                )
    return gaps
