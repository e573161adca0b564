"""Tests for PTO/leave conflict detection and placement validation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from cardio_sched.scheduling.calendar import HolidayCalendar, MONDAY
from cardio_sched.scheduling.conflicts import (
    OverrideRegistry,
    OverrideSession,
    find_conflicts,
    get_pto_time_blocks,
    has_pto_for_slot,
    is_on_leave,
    shows_on_leave,
    validate_placement,
)
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    AvailabilityRuleInfo,
    Enforcement,
    LeaveInfo,
    LeaveType,
    ProviderInfo,
    RuleType,
    ServiceInfo,
    TimeBlock,
)

MON = date(2026, 3, 2)
MEMORIAL_DAY = date(2026, 5, 25)

ROOMS = ServiceInfo(id="rooms", name="Rooms AM", time_block=TimeBlock.AM, requires_rooms=True)
CONSULTS = ServiceInfo(id="consults", name="Consults", required_capability="Inpatient")
ECHO = ServiceInfo(id="echo", name="Echo TTE AM", time_block=TimeBlock.AM)
PTO = ServiceInfo(id="pto", name="PTO")
SERVICES = {s.id: s for s in (ROOMS, CONSULTS, ECHO, PTO)}

ANN = ProviderInfo(id="ann", name="Ann Adams", initials="AA", capabilities=["Rooms"])


def _a(service: ServiceInfo, block=TimeBlock.AM, day=MON, provider_id="ann", id=None, **kw) -> AssignmentInfo:
    return AssignmentInfo(
        id=id, provider_id=provider_id, service_id=service.id,
        date=day, time_block=block, **kw,
    )


def _validate(proposal, existing=(), service=ROOMS, provider=ANN, **kw):
    return validate_placement(
        proposal,
        provider=provider,
        service=service,
        existing=list(existing),
        services=SERVICES,
        holidays=HolidayCalendar(),
        **kw,
    )


class TestPTOBlocks:
    def test_pto_flag_or_pto_service(self):
        rows = [
            _a(ROOMS, TimeBlock.AM, is_pto=True),
            _a(PTO, TimeBlock.PM),
            _a(ECHO, TimeBlock.AM),
        ]
        assert get_pto_time_blocks(rows, "ann", MON, SERVICES) == {TimeBlock.AM, TimeBlock.PM}

    def test_other_day_or_provider_ignored(self):
        rows = [_a(PTO, day=MON + timedelta(days=1)), _a(PTO, provider_id="bob")]
        assert get_pto_time_blocks(rows, "ann", MON, SERVICES) == set()

    def test_find_conflicts_full_day_pto(self):
        work_am = _a(ROOMS, TimeBlock.AM)
        work_pm = _a(ECHO, TimeBlock.PM)
        rows = [work_am, work_pm, _a(PTO, TimeBlock.BOTH)]
        assert find_conflicts(rows, "ann", MON, {TimeBlock.BOTH}, SERVICES) == [work_am, work_pm]

    def test_find_conflicts_half_day(self):
        work_am = _a(ROOMS, TimeBlock.AM)
        work_pm = _a(ECHO, TimeBlock.PM)
        assert find_conflicts([work_am, work_pm], "ann", MON, {TimeBlock.PM}, SERVICES) == [work_pm]

    def test_find_conflicts_without_pto(self):
        assert find_conflicts([_a(ROOMS)], "ann", MON, set(), SERVICES) == []


class TestLeave:
    def test_inclusive_range(self):
        leave = LeaveInfo(provider_id="ann", start_date=MON, end_date=MON + timedelta(days=4))
        assert is_on_leave([leave], "ann", MON)
        assert is_on_leave([leave], "ann", MON + timedelta(days=4))
        assert not is_on_leave([leave], "ann", MON + timedelta(days=5))
        assert not is_on_leave([leave], "bob", MON)

    def test_maternity_hidden_from_display_only(self):
        leave = LeaveInfo(provider_id="ann", start_date=MON, end_date=MON, leave_type=LeaveType.MATERNITY)
        assert is_on_leave([leave], "ann", MON)
        assert not shows_on_leave([leave], "ann", MON)

    def test_leave_makes_every_slot_unavailable(self):
        leave = LeaveInfo(provider_id="ann", start_date=MON, end_date=MON)
        assert has_pto_for_slot([], [leave], "ann", MON, TimeBlock.PM)


class TestOverrideSession:
    def test_grant_and_revoke(self):
        session = OverrideSession()
        session.grant("ann", MON)
        assert session.is_overridden("ann", MON)
        assert not session.is_overridden("ann", MON + timedelta(days=1))
        session.revoke("ann", MON)
        assert not session.is_overridden("ann", MON)

    def test_expires_after_ttl(self):
        now = [datetime(2026, 3, 1, 8, tzinfo=timezone.utc)]
        session = OverrideSession(ttl=timedelta(minutes=30), clock=lambda: now[0])
        session.grant("ann", MON)
        now[0] += timedelta(minutes=29)
        assert session.is_overridden("ann", MON)
        now[0] += timedelta(minutes=2)
        assert not session.is_overridden("ann", MON)
        assert len(session) == 0

    def test_registry_isolates_sessions(self):
        registry = OverrideRegistry()
        registry.get("tab-1").grant("ann", MON)
        assert registry.get("tab-1").is_overridden("ann", MON)
        assert not registry.get("tab-2").is_overridden("ann", MON)
        registry.drop("tab-1")
        assert not registry.get("tab-1").is_overridden("ann", MON)


class TestValidatePlacement:
    def test_clean_slot_is_allowed(self):
        check = _validate(_a(ROOMS))
        assert check.allowed
        assert check.code == "ok"

    def test_holiday_blocks_outpatient_service(self):
        check = _validate(_a(ROOMS, day=MEMORIAL_DAY))
        assert not check.allowed
        assert check.code == "holiday"
        assert "Memorial Day" in check.reason

    def test_holiday_allows_inpatient_service(self):
        provider = ANN.model_copy(update={"capabilities": ["Inpatient"]})
        check = _validate(_a(CONSULTS, day=MEMORIAL_DAY), service=CONSULTS, provider=provider)
        assert check.allowed

    def test_pto_over_work_rejected(self):
        work = _a(ROOMS, TimeBlock.AM, id="w1")
        check = _validate(_a(PTO, TimeBlock.BOTH), [work], service=PTO)
        assert not check.allowed
        assert check.code == "pto_over_work"
        assert [c.id for c in check.conflicts] == ["w1"]

    def test_half_day_pto_beside_other_half_work(self):
        work = _a(ROOMS, TimeBlock.AM)
        assert _validate(_a(PTO, TimeBlock.PM), [work], service=PTO).allowed

    def test_duplicate_pto(self):
        check = _validate(_a(PTO, TimeBlock.AM), [_a(PTO, TimeBlock.BOTH)], service=PTO)
        assert check.code == "duplicate_pto"

    def test_work_over_pto_requires_override(self):
        pto = _a(PTO, TimeBlock.BOTH, id="pto-1")
        check = _validate(_a(ROOMS), [pto])
        assert not check.allowed
        assert check.code == "work_over_pto"
        assert check.requires_override
        assert [c.id for c in check.conflicts] == ["pto-1"]

    def test_override_accepts_and_records_session(self):
        session = OverrideSession()
        check = _validate(_a(ROOMS), [_a(PTO, TimeBlock.BOTH)], override=True, session=session)
        assert check.allowed
        assert check.overridden
        assert session.is_overridden("ann", MON)

        # later placements that day need no new confirmation
        again = _validate(_a(ECHO, TimeBlock.AM), [_a(PTO, TimeBlock.BOTH)], service=ECHO, session=session)
        assert again.allowed

    def test_rejected_override_is_not_remembered(self):
        session = OverrideSession()
        rules = [
            AvailabilityRuleInfo(
                provider_id="ann", day_of_week=MONDAY, time_block=TimeBlock.AM,
                rule_type=RuleType.BLOCK, enforcement=Enforcement.HARD,
            )
        ]
        check = _validate(
            _a(ROOMS), [_a(PTO, TimeBlock.BOTH)], override=True, session=session, rules=rules
        )
        assert check.code == "availability_hard"
        assert not session.is_overridden("ann", MON)

    def test_leave_requires_override(self):
        leave = LeaveInfo(provider_id="ann", start_date=MON, end_date=MON, leave_type=LeaveType.CONFERENCE)
        check = _validate(_a(ROOMS), leaves=[leave])
        assert check.code == "work_over_pto"
        assert "conference" in check.reason

    def test_capability_required(self):
        check = _validate(_a(CONSULTS), service=CONSULTS)
        assert check.code == "capability"

    def test_already_assigned_same_cell(self):
        check = _validate(_a(ROOMS), [_a(ROOMS, id="r1")])
        assert check.code == "already_assigned"

    def test_double_booked_other_service(self):
        check = _validate(_a(ROOMS), [_a(ECHO, id="e1")])
        assert check.code == "double_booked"
        assert "Echo TTE AM" in check.reason

    def test_hard_availability_block_not_overridable(self):
        rules = [
            AvailabilityRuleInfo(
                provider_id="ann", day_of_week=MONDAY, time_block=TimeBlock.BOTH,
                rule_type=RuleType.BLOCK, enforcement=Enforcement.HARD, reason="Research day",
            )
        ]
        check = _validate(_a(ROOMS), rules=rules, override=True, acknowledge_warnings=True)
        assert not check.allowed
        assert check.code == "availability_hard"
        assert check.reason == "Research day"

    @pytest.mark.parametrize("acknowledged", [False, True])
    def test_warn_needs_acknowledgement(self, acknowledged):
        rules = [
            AvailabilityRuleInfo(
                provider_id="ann", day_of_week=MONDAY, time_block=TimeBlock.AM,
                rule_type=RuleType.BLOCK, enforcement=Enforcement.WARN,
            )
        ]
        check = _validate(_a(ROOMS), rules=rules, acknowledge_warnings=acknowledged)
        assert check.allowed is acknowledged
        assert check.requires_acknowledgement is not acknowledged
        assert check.availability.enforcement == Enforcement.WARN
