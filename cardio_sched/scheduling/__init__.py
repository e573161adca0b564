"""Schedule assignment and conflict-resolution engine."""

from cardio_sched.scheduling.availability import check_bulk, evaluate, evaluate_on
from cardio_sched.scheduling.calendar import HolidayCalendar, day_of_week, week_start
from cardio_sched.scheduling.capacity import (
    CapacityPolicy,
    compute_coverage_suggestions,
    compute_room_suggestions,
    find_coverage_gaps,
)
from cardio_sched.scheduling.conflicts import (
    OverrideRegistry,
    OverrideSession,
    find_conflicts,
    get_pto_time_blocks,
    is_on_leave,
    validate_placement,
)
from cardio_sched.scheduling.exceptions import (
    HistoryStateError,
    NotFoundError,
    PolicyConflictError,
    ScheduleValidationError,
    SchedulingError,
)
from cardio_sched.scheduling.history import ChangeHistoryManager, detect_drift
from cardio_sched.scheduling.models import ApplyOptions, TemplateApplyResult, TimeBlock
from cardio_sched.scheduling.service import SchedulingService
from cardio_sched.scheduling.templates import plan_alternating, plan_template

__all__ = [
    "ApplyOptions",
    "CapacityPolicy",
    "ChangeHistoryManager",
    "HistoryStateError",
    "HolidayCalendar",
    "NotFoundError",
    "OverrideRegistry",
    "OverrideSession",
    "PolicyConflictError",
    "ScheduleValidationError",
    "SchedulingError",
    "SchedulingService",
    "TemplateApplyResult",
    "TimeBlock",
    "check_bulk",
    "compute_coverage_suggestions",
    "compute_room_suggestions",
    "day_of_week",
    "detect_drift",
    "evaluate",
    "evaluate_on",
    "find_conflicts",
    "find_coverage_gaps",
    "get_pto_time_blocks",
    "is_on_leave",
    "plan_alternating",
    "plan_template",
    "validate_placement",
    "week_start",
]
