"""Idempotent step log for multi-row schedule mutations.

Bulk operations are not transactional: each row write is one step that is
committed on its own. The log records the outcome of every step so a rerun
skips what already succeeded and partial failure is reported per step.
"""

import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel

from cardio_sched.scheduling.models import AssignmentInfo

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    CREATE = "create"
    DELETE = "delete"


class StepStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Step(BaseModel):
    kind: StepKind
    assignment: AssignmentInfo
    status: StepStatus = StepStatus.PENDING
    result_id: Optional[str] = None
    error: Optional[str] = None


class ScheduleWriter(Protocol):
    """Row-level persistence used by the step runner."""

    async def insert_assignment(self, assignment: AssignmentInfo, *, keep_id: bool = False) -> str: ...

    async def delete_assignment(self, assignment_id: str) -> bool: ...

    async def checkpoint(self) -> None: ...

    async def discard(self) -> None: ...


class StepLog(BaseModel):
    steps: list[Step] = []

    @classmethod
    def build(
        cls,
        deletes: Sequence[AssignmentInfo] = (),
        creates: Sequence[AssignmentInfo] = (),
    ) -> "StepLog":
        """Deletes run before creates so a replaced cell never holds both rows."""
        return cls(
            steps=[Step(kind=StepKind.DELETE, assignment=a) for a in deletes]
            + [Step(kind=StepKind.CREATE, assignment=a) for a in creates]
        )

    def _of(self, kind: StepKind, status: StepStatus) -> list[Step]:
        return [s for s in self.steps if s.kind == kind and s.status == status]

    @property
    def created_ids(self) -> list[str]:
        return [s.result_id for s in self._of(StepKind.CREATE, StepStatus.SUCCEEDED) if s.result_id]

    @property
    def created(self) -> list[AssignmentInfo]:
        return [s.assignment for s in self._of(StepKind.CREATE, StepStatus.SUCCEEDED)]

    @property
    def deleted(self) -> list[AssignmentInfo]:
        return [s.assignment for s in self._of(StepKind.DELETE, StepStatus.SUCCEEDED)]

    @property
    def failed(self) -> list[Step]:
        return [s for s in self.steps if s.status == StepStatus.FAILED]

    @property
    def complete(self) -> bool:
        return all(s.status == StepStatus.SUCCEEDED for s in self.steps)

    def to_json(self) -> list[dict[str, Any]]:
        return [s.model_dump(mode="json") for s in self.steps]


async def run_steps(
    log: StepLog,
    writer: ScheduleWriter,
    *,
    keep_ids: bool = False,
    on_step: Callable[[Step], Awaitable[None]] | None = None,
) -> StepLog:
    """Execute every step that has not yet succeeded.

    A failed step is rolled back on its own and recorded; execution carries on
    with the next step. ``keep_ids`` reinserts rows under their original ids,
    which is how cleared rows are restored on undo.

    ``on_step`` runs before the step's checkpoint, so whatever it writes
    commits together with the row change.
    """
    for step in log.steps:
        if step.status == StepStatus.SUCCEEDED:
            continue
        try:
            if step.kind == StepKind.CREATE:
                step.result_id = await writer.insert_assignment(step.assignment, keep_id=keep_ids)
            else:
                # a row that is already gone counts as deleted
                if step.assignment.id:
                    await writer.delete_assignment(step.assignment.id)
                step.result_id = step.assignment.id
            step.status = StepStatus.SUCCEEDED
            step.error = None
            if on_step is not None:
                await on_step(step)
            await writer.checkpoint()
        except Exception as e:
            await writer.discard()
            step.status = StepStatus.FAILED
            step.error = str(e)
            if step.kind == StepKind.CREATE:
                step.result_id = None
            logger.warning("Schedule step %s failed: %s", step.kind.value, e)
            if on_step is not None:
                await on_step(step)
                await writer.checkpoint()
    return log
