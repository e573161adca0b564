"""Scheduling error hierarchy."""


class SchedulingError(Exception):
    """Base exception for scheduling errors."""

    pass


class ScheduleValidationError(SchedulingError):
    """Input rejected before any state was touched."""

    pass


class PolicyConflictError(SchedulingError):
    """A placement violates a hard scheduling policy."""

    def __init__(self, message: str, code: str = "conflict", details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class HistoryStateError(SchedulingError):
    """An undo/redo was requested in a state that does not allow it."""

    pass


class NotFoundError(SchedulingError):
    """A referenced record does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier
