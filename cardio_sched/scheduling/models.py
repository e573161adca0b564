"""Pydantic models for the scheduling engine."""

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, computed_field


class TimeBlock(str, Enum):
    """Schedulable half-day unit. BOTH is the full day."""

    AM = "AM"
    PM = "PM"
    BOTH = "BOTH"

    def overlaps(self, other: "TimeBlock") -> bool:
        """BOTH intersects everything; AM and PM only themselves."""
        other = TimeBlock(other)
        return self is TimeBlock.BOTH or other is TimeBlock.BOTH or self is other


class DayBlock(str, Enum):
    """Time block used by day metadata (DAY covers the whole date)."""

    AM = "AM"
    PM = "PM"
    DAY = "DAY"


class ProviderRole(str, Enum):
    ATTENDING = "attending"
    FELLOW = "fellow"
    PA = "pa"
    NP = "np"


class RuleType(str, Enum):
    ALLOW = "allow"
    BLOCK = "block"


class Enforcement(str, Enum):
    HARD = "hard"
    WARN = "warn"


class LeaveType(str, Enum):
    MATERNITY = "maternity"
    VACATION = "vacation"
    MEDICAL = "medical"
    PERSONAL = "personal"
    CONFERENCE = "conference"
    OTHER = "other"


class TemplateType(str, Enum):
    WEEKLY = "weekly"
    CUSTOM = "custom"


class CapacityZone(str, Enum):
    """Room capacity classification for display."""

    EMPTY = "empty"
    UNDER = "under"
    OPTIMAL = "optimal"
    OVER = "over"
    NOT_APPLICABLE = "not_applicable"


class ChangeType(str, Enum):
    MODIFIED = "modified"
    DELETED = "deleted"
    ADDED = "added"


class OperationType(str, Enum):
    TEMPLATE_APPLY = "template_apply"
    TEMPLATE_APPLY_ALTERNATING = "template_apply_alternating"
    BULK_ADD = "bulk_add"
    BULK_REMOVE = "bulk_remove"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------


class ProviderInfo(BaseModel):
    """A schedulable provider."""

    id: str
    name: str
    initials: str
    role: ProviderRole = ProviderRole.ATTENDING
    capabilities: list[str] = []
    default_room_count: int = 0

    @property
    def display_name(self) -> str:
        return self.name or self.initials


class ServiceInfo(BaseModel):
    """A schedulable service (room block, imaging study, clinic)."""

    id: str
    name: str
    time_block: TimeBlock = TimeBlock.BOTH
    required_capability: Optional[str] = None
    requires_rooms: bool = False


class AssignmentInfo(BaseModel):
    """A provider placed on a service for a date and time block."""

    id: Optional[str] = None
    provider_id: str
    service_id: str
    date: date
    time_block: TimeBlock
    room_count: int = 0
    is_pto: bool = False
    is_covering: bool = False
    notes: Optional[str] = None

    def fingerprint(self) -> dict[str, Any]:
        """Fields whose change counts as a modification of the row."""
        return self.model_dump(mode="json", exclude={"id"})


class AvailabilityRuleInfo(BaseModel):
    """Administratively authored allow/block rule. service_id None means all services."""

    id: Optional[str] = None
    provider_id: str
    service_id: Optional[str] = None
    day_of_week: int = Field(ge=0, le=6, description="0=Sunday .. 6=Saturday")
    time_block: TimeBlock
    rule_type: RuleType
    enforcement: Enforcement
    reason: Optional[str] = None


class LeaveInfo(BaseModel):
    """A provider leave spanning an inclusive date range."""

    id: Optional[str] = None
    provider_id: str
    start_date: date
    end_date: date
    leave_type: LeaveType = LeaveType.OTHER
    reason: Optional[str] = None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class TemplateEntry(BaseModel):
    """One slot of a weekly template, relative to a Sunday week start."""

    day_of_week: int = Field(ge=0, le=6)
    service_id: str
    provider_id: str
    time_block: TimeBlock
    room_count: int = 0
    is_pto: bool = False
    notes: Optional[str] = None


class TemplateInfo(BaseModel):
    id: str
    name: str
    type: TemplateType = TemplateType.WEEKLY
    entries: list[TemplateEntry] = []


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class AvailabilityResult(BaseModel):
    """Outcome of evaluating availability rules for one slot."""

    allowed: bool = True
    enforcement: Optional[Enforcement] = None
    reason: Optional[str] = None

    @property
    def is_hard_block(self) -> bool:
        return self.enforcement is Enforcement.HARD

    @property
    def is_warning(self) -> bool:
        return self.enforcement is Enforcement.WARN


class AvailabilityViolation(BaseModel):
    provider_id: str
    provider_initials: str = "Unknown"
    service_id: str
    service_name: str = "Unknown"
    date: date
    time_block: TimeBlock
    enforcement: Enforcement
    reason: Optional[str] = None


class BulkAvailabilityResult(BaseModel):
    violations: list[AvailabilityViolation] = []

    @computed_field
    @property
    def hard_blocks(self) -> list[AvailabilityViolation]:
        return [v for v in self.violations if v.enforcement is Enforcement.HARD]

    @computed_field
    @property
    def warnings(self) -> list[AvailabilityViolation]:
        return [v for v in self.violations if v.enforcement is Enforcement.WARN]


# ---------------------------------------------------------------------------
# Placement
# ---------------------------------------------------------------------------

PlacementCode = Literal[
    "ok",
    "holiday",
    "pto_over_work",
    "duplicate_pto",
    "work_over_pto",
    "double_booked",
    "capability",
    "already_assigned",
    "availability_hard",
    "availability_warn",
]


class PlacementCheck(BaseModel):
    """Result of validating a single proposed assignment."""

    allowed: bool
    code: PlacementCode = "ok"
    reason: Optional[str] = None
    conflicts: list[AssignmentInfo] = []
    availability: Optional[AvailabilityResult] = None
    requires_override: bool = False
    requires_acknowledgement: bool = False
    overridden: bool = False


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class ApplyOptions(BaseModel):
    """Conflict policy for template application.

    clear_existing takes precedence over skip_conflicts when both are set.
    """

    clear_existing: bool = False
    skip_conflicts: bool = True


class PTOConflict(BaseModel):
    provider_id: str
    provider_name: Optional[str] = None
    date: date
    time_block: TimeBlock
    intended_service_id: str
    intended_service_name: Optional[str] = None
    reason: str = "Provider has PTO"


class HolidayConflict(BaseModel):
    date: date
    holiday_name: str
    service_id: str
    service_name: str

    def __str__(self) -> str:
        return f"{self.date.isoformat()}: {self.holiday_name} ({self.service_name})"


class WeekApplication(BaseModel):
    week_start: date
    template_id: str
    template_name: str


class TemplateApplyResult(BaseModel):
    """Aggregated outcome of a single or alternating template application."""

    created: int = 0
    skipped: int = 0
    failed: int = 0
    slots_attempted: int = 0
    pto_conflicts: list[PTOConflict] = []
    holiday_conflicts: list[HolidayConflict] = []
    availability_blocks: list[AvailabilityViolation] = []
    availability_warnings: list[AvailabilityViolation] = []
    week_applications: list[WeekApplication] = []
    history_id: Optional[str] = None

    @computed_field
    @property
    def coverage_needed(self) -> int:
        return len(self.pto_conflicts)


# ---------------------------------------------------------------------------
# Room capacity & suggestions
# ---------------------------------------------------------------------------


class RoomCapacity(BaseModel):
    date: date
    time_block: TimeBlock
    current: int = 0
    target: int
    needed: int = 0
    zone: CapacityZone
    provider_ids: list[str] = []


class RoomSuggestion(BaseModel):
    provider_id: str
    name: str
    initials: str
    role: ProviderRole
    default_room_count: int = 0
    has_warning: bool = False
    warning_reason: Optional[str] = None
    is_preceptor: bool = False


class RoomSuggestionResult(BaseModel):
    date: date
    time_block: TimeBlock
    needed: int
    target: int
    current_rooms: int
    zone: CapacityZone
    suggestions: list[RoomSuggestion] = []
    fellows_in_rooms: bool = False


class CoverageSuggestion(BaseModel):
    provider_id: str
    name: str
    initials: str
    has_warning: bool = False
    warning_reason: Optional[str] = None


class CoverageSuggestionResult(BaseModel):
    service_id: str
    service_name: str
    date: date
    time_block: TimeBlock
    required_capabilities: list[str] = []
    suggestions: list[CoverageSuggestion] = []


class CoverageGap(BaseModel):
    date: date
    time_block: TimeBlock
    service_id: str
    service_name: str


# ---------------------------------------------------------------------------
# Change history
# ---------------------------------------------------------------------------


class DriftConflict(BaseModel):
    """An assignment in an operation's range that changed after the operation."""

    id: str
    date: Optional[dt.date] = None
    time_block: Optional[TimeBlock] = None
    provider_name: Optional[str] = None
    service_name: Optional[str] = None
    change_type: ChangeType
    details: Optional[str] = None


class UndoResult(BaseModel):
    success: bool = False
    requires_confirmation: bool = False
    conflicts: list[DriftConflict] = []
    deleted_count: int = 0
    restored_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    message: str = ""


class RedoResult(BaseModel):
    success: bool = False
    deleted_count: int = 0
    created_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    message: str = ""


class HistoryEntry(BaseModel):
    id: str
    operation_type: OperationType
    description: str
    affected_date_start: date
    affected_date_end: date
    created_at: datetime
    is_undone: bool = False
    undone_at: Optional[datetime] = None
    is_redone: bool = False
    redone_at: Optional[datetime] = None
    is_active: bool = True
    metadata: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Bulk provider operations
# ---------------------------------------------------------------------------


class BulkAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


class BulkPatternType(str, Enum):
    ALL = "all"
    RECURRING = "recurring"


class BulkPattern(BaseModel):
    """Which slots a bulk add/remove touches."""

    type: BulkPatternType = BulkPatternType.ALL
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    time_block: Optional[TimeBlock] = None
    service_id: Optional[str] = None


class BulkProviderResult(BaseModel):
    action: BulkAction
    preview: bool = False
    affected_count: int = 0
    skipped: int = 0
    failed: int = 0
    assignments: list[AssignmentInfo] = []
    history_id: Optional[str] = None
    message: str = ""
