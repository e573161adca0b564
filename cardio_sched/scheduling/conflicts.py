"""PTO and leave conflict detection, plus single-placement validation."""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from cardio_sched.scheduling.availability import evaluate_on
from cardio_sched.scheduling.calendar import HolidayCalendar
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    AvailabilityRuleInfo,
    Enforcement,
    LeaveInfo,
    LeaveType,
    PlacementCheck,
    ProviderInfo,
    ServiceInfo,
    TimeBlock,
)

logger = logging.getLogger(__name__)

PTO_SERVICE_NAME = "PTO"

# Leave types hidden from the calendar "on leave" badge. They still make the
# provider unavailable.
DISPLAY_EXCLUDED_LEAVE_TYPES = frozenset({LeaveType.MATERNITY})


def is_pto_service(service: Optional[ServiceInfo]) -> bool:
    return service is not None and service.name == PTO_SERVICE_NAME


def is_pto_assignment(
    assignment: AssignmentInfo, services: Mapping[str, ServiceInfo] | None = None
) -> bool:
    """PTO is either flagged on the row or expressed by placement on the PTO service."""
    if assignment.is_pto:
        return True
    return is_pto_service((services or {}).get(assignment.service_id))


def get_pto_time_blocks(
    assignments: Iterable[AssignmentInfo],
    provider_id: str,
    day: date,
    services: Mapping[str, ServiceInfo] | None = None,
) -> set[TimeBlock]:
    return {
        TimeBlock(a.time_block)
        for a in assignments
        if a.provider_id == provider_id and a.date == day and is_pto_assignment(a, services)
    }


def leave_for(leaves: Iterable[LeaveInfo], provider_id: str, day: date) -> Optional[LeaveInfo]:
    for leave in leaves:
        if leave.provider_id == provider_id and leave.covers(day):
            return leave
    return None


def is_on_leave(leaves: Iterable[LeaveInfo], provider_id: str, day: date) -> bool:
    return leave_for(leaves, provider_id, day) is not None


def shows_on_leave(leaves: Iterable[LeaveInfo], provider_id: str, day: date) -> bool:
    """Calendar display variant of is_on_leave that hides excluded leave types."""
    return any(
        leave.provider_id == provider_id
        and leave.covers(day)
        and LeaveType(leave.leave_type) not in DISPLAY_EXCLUDED_LEAVE_TYPES
        for leave in leaves
    )


def blocks_intersect(pto_blocks: Iterable[TimeBlock], time_block: TimeBlock) -> bool:
    return any(TimeBlock(b).overlaps(time_block) for b in pto_blocks)


def find_conflicts(
    assignments: Iterable[AssignmentInfo],
    provider_id: str,
    day: date,
    pto_blocks: Iterable[TimeBlock],
    services: Mapping[str, ServiceInfo] | None = None,
) -> list[AssignmentInfo]:
    """Non-PTO work for the provider on ``day`` that intersects the PTO blocks."""
    pto_blocks = set(pto_blocks)
    if not pto_blocks:
        return []
    return [
        a
        for a in assignments
        if a.provider_id == provider_id
        and a.date == day
        and not is_pto_assignment(a, services)
        and blocks_intersect(pto_blocks, a.time_block)
    ]


def has_pto_for_slot(
    assignments: Iterable[AssignmentInfo],
    leaves: Iterable[LeaveInfo],
    provider_id: str,
    day: date,
    time_block: TimeBlock,
    services: Mapping[str, ServiceInfo] | None = None,
) -> bool:
    """True when PTO or a leave makes the provider unavailable for the slot."""
    if is_on_leave(leaves, provider_id, day):
        return True
    return blocks_intersect(get_pto_time_blocks(assignments, provider_id, day, services), time_block)


# ---------------------------------------------------------------------------
# Override session
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OverrideSession:
    """Work-over-PTO overrides accepted during one editing session.

    Entries are keyed by (provider, date) and expire after ``ttl``; a new
    session starts empty, so overrides must be confirmed again after reload.
    """

    def __init__(
        self,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.ttl = ttl
        self._clock = clock
        self._granted: dict[tuple[str, date], datetime] = {}

    def grant(self, provider_id: str, day: date) -> None:
        self._granted[(provider_id, day)] = self._clock()

    def is_overridden(self, provider_id: str, day: date) -> bool:
        granted_at = self._granted.get((provider_id, day))
        if granted_at is None:
            return False
        if self.ttl is not None and self._clock() - granted_at > self.ttl:
            del self._granted[(provider_id, day)]
            return False
        return True

    def revoke(self, provider_id: str, day: date) -> None:
        self._granted.pop((provider_id, day), None)

    def clear(self) -> None:
        self._granted.clear()

    def __len__(self) -> int:
        return len(self._granted)


class OverrideRegistry:
    """Process-local map of session id to OverrideSession."""

    def __init__(self, ttl: timedelta | None = None) -> None:
        self.ttl = ttl
        self._sessions: dict[str, OverrideSession] = {}

    def get(self, session_id: str) -> OverrideSession:
        if session_id not in self._sessions:
            self._sessions[session_id] = OverrideSession(ttl=self.ttl)
        return self._sessions[session_id]

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


# ---------------------------------------------------------------------------
# Placement validation
# ---------------------------------------------------------------------------


def validate_placement(
    proposal: AssignmentInfo,
    *,
    provider: ProviderInfo,
    service: ServiceInfo,
    existing: Sequence[AssignmentInfo],
    services: Mapping[str, ServiceInfo],
    leaves: Sequence[LeaveInfo] = (),
    rules: Sequence[AvailabilityRuleInfo] = (),
    holidays: HolidayCalendar | None = None,
    override: bool = False,
    session: OverrideSession | None = None,
    acknowledge_warnings: bool = False,
) -> PlacementCheck:
    """Validate one proposed assignment against everything already scheduled.

    Checks run in order: holiday closure, PTO placed over work, work placed
    over PTO or leave (needs ``override`` or a prior grant in ``session``),
    capability, duplicate placement, double booking, availability rules.
    A ``warn`` availability result needs ``acknowledge_warnings``.
    """
    day = proposal.date
    block = TimeBlock(proposal.time_block)
    mine = [a for a in existing if a.provider_id == provider.id and a.date == day]

    if holidays is not None:
        holiday = holidays.blocks_service(day, service.name)
        if holiday is not None:
            return PlacementCheck(
                allowed=False,
                code="holiday",
                reason=f"{holiday.name}: only inpatient services can be scheduled",
            )

    if proposal.is_pto or is_pto_service(service):
        work = find_conflicts(mine, provider.id, day, {block}, services)
        if work:
            return PlacementCheck(
                allowed=False,
                code="pto_over_work",
                reason="Provider has work assignments for this time block. "
                "Remove them before assigning PTO.",
                conflicts=work,
            )
        if blocks_intersect(get_pto_time_blocks(mine, provider.id, day, services), block):
            return PlacementCheck(
                allowed=False,
                code="duplicate_pto",
                reason="Provider already has PTO for this time block",
            )
        return PlacementCheck(allowed=True)

    overridden = False
    pto_rows = [
        a for a in mine if is_pto_assignment(a, services) and TimeBlock(a.time_block).overlaps(block)
    ]
    leave = leave_for(leaves, provider.id, day)
    if pto_rows or leave is not None:
        if override or (session is not None and session.is_overridden(provider.id, day)):
            overridden = True
        else:
            reason = (
                "Provider has PTO for this time block and cannot be assigned work"
                if pto_rows
                else f"Provider is on {LeaveType(leave.leave_type).value} leave"
            )
            return PlacementCheck(
                allowed=False,
                code="work_over_pto",
                reason=reason,
                conflicts=pto_rows,
                requires_override=True,
            )

    if service.required_capability and service.required_capability not in provider.capabilities:
        return PlacementCheck(
            allowed=False,
            code="capability",
            reason=f"Provider lacks the {service.required_capability} capability",
        )

    work = [
        a for a in mine if not is_pto_assignment(a, services) and TimeBlock(a.time_block).overlaps(block)
    ]
    same_cell = [a for a in work if a.service_id == service.id]
    if same_cell:
        return PlacementCheck(
            allowed=False,
            code="already_assigned",
            reason="Provider is already assigned to this service and time block",
            conflicts=same_cell,
        )
    if work:
        other = services.get(work[0].service_id)
        return PlacementCheck(
            allowed=False,
            code="double_booked",
            reason=f"Provider already has a {other.name if other else 'different'} "
            "assignment for this time block",
            conflicts=work,
        )

    availability = evaluate_on(rules, provider.id, service.id, day, block)
    if availability.enforcement is Enforcement.HARD:
        return PlacementCheck(
            allowed=False,
            code="availability_hard",
            reason=availability.reason,
            availability=availability,
            overridden=overridden,
        )
    if availability.enforcement is Enforcement.WARN and not acknowledge_warnings:
        return PlacementCheck(
            allowed=False,
            code="availability_warn",
            reason=availability.reason,
            availability=availability,
            requires_acknowledgement=True,
            overridden=overridden,
        )

    if overridden:
        if session is not None:
            session.grant(provider.id, day)
        logger.info("PTO override accepted for provider %s on %s", provider.id, day)
    return PlacementCheck(
        allowed=True,
        availability=availability if availability.enforcement else None,
        overridden=overridden,
        conflicts=pto_rows,
    )
