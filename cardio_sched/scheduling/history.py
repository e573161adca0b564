"""Change history: drift detection and undo/redo of bulk operations.

A record is written before a bulk operation executes and kept in sync with
its step log, so an operation interrupted half way is still undoable for the
rows it actually touched. After the operation finishes the record stores a
fingerprint of every assignment in the affected range; undo compares that
post-state with the live rows to detect drift.

Undo and redo are resumable. A run that leaves failed steps behind parks its
step log in the record metadata and the next attempt continues from it.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from cardio_sched.core.models import ChangeHistory
from cardio_sched.core.repository import (
    AssignmentRepository,
    ChangeHistoryRepository,
    ProviderRepository,
    ServiceRepository,
)
from cardio_sched.scheduling.exceptions import HistoryStateError, NotFoundError
from cardio_sched.scheduling.models import (
    AssignmentInfo,
    ChangeType,
    DriftConflict,
    HistoryEntry,
    OperationType,
    ProviderInfo,
    RedoResult,
    ServiceInfo,
    UndoResult,
)
from cardio_sched.scheduling.snapshot import (
    SessionScheduleWriter,
    as_uuid,
    assignment_info,
    provider_info,
    service_info,
)
from cardio_sched.scheduling.steps import ScheduleWriter, StepLog, run_steps

logger = logging.getLogger(__name__)

PENDING_UNDO = "pending_undo"
PENDING_REDO = "pending_redo"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _slot(row: AssignmentInfo) -> tuple:
    return (row.provider_id, row.service_id, row.date, row.time_block)


def _unfilled(
    rows: list[AssignmentInfo], live: Mapping[str, AssignmentInfo], removed: set[str]
) -> tuple[list[AssignmentInfo], int]:
    """Drop rows whose slot is held by a live row that stays, and count them."""
    occupied = {_slot(row) for row in live.values() if row.id not in removed}
    kept = []
    for row in rows:
        if _slot(row) in occupied:
            continue
        occupied.add(_slot(row))
        kept.append(row)
    return kept, len(rows) - len(kept)


def fingerprint_rows(rows: Iterable[AssignmentInfo]) -> list[dict[str, Any]]:
    return [{"id": row.id, **row.fingerprint()} for row in rows]


def _changed_fields(before: dict[str, Any], after: dict[str, Any]) -> list[str]:
    return sorted(k for k in before.keys() | after.keys() if k != "id" and before.get(k) != after.get(k))


def detect_drift(
    post_state: Iterable[dict[str, Any]],
    current: Iterable[AssignmentInfo],
    providers: Mapping[str, ProviderInfo] | None = None,
    services: Mapping[str, ServiceInfo] | None = None,
) -> list[DriftConflict]:
    """Compare the range right after an operation with the live rows.

    Rows gone since then are ``deleted``, rows whose fields differ are
    ``modified`` and rows that did not exist are ``added``.
    """
    providers = providers or {}
    services = services or {}
    before = {row["id"]: row for row in post_state}
    now = {row.id: row for row in current}

    def conflict(row_id: str, fields: dict[str, Any], change_type: ChangeType, details=None) -> DriftConflict:
        provider = providers.get(fields.get("provider_id"))
        service = services.get(fields.get("service_id"))
        return DriftConflict(
            id=row_id,
            date=fields.get("date"),
            time_block=fields.get("time_block"),
            provider_name=provider.display_name if provider else None,
            service_name=service.name if service else None,
            change_type=change_type,
            details=details,
        )

    conflicts: list[DriftConflict] = []
    for row_id, fields in before.items():
        live = now.get(row_id)
        if live is None:
            conflicts.append(conflict(row_id, fields, ChangeType.DELETED))
            continue
        changed = _changed_fields(fields, live.fingerprint())
        if changed:
            conflicts.append(
                conflict(row_id, live.fingerprint(), ChangeType.MODIFIED, f"Changed: {', '.join(changed)}")
            )
    for row_id, live in now.items():
        if row_id not in before:
            conflicts.append(conflict(row_id, live.fingerprint(), ChangeType.ADDED))
    return conflicts


def is_active(record: ChangeHistory) -> bool:
    """Whether the operation's effect is currently applied.

    Redo keeps ``is_undone`` set, so the most recent of undo/redo decides.
    """
    return not record.is_undone or bool(record.is_redone)


def history_entry(record: ChangeHistory) -> HistoryEntry:
    return HistoryEntry(
        id=str(record.id),
        operation_type=OperationType(record.operation_type),
        description=record.operation_description,
        affected_date_start=record.affected_date_start,
        affected_date_end=record.affected_date_end,
        created_at=record.created_at,
        is_undone=bool(record.is_undone),
        undone_at=record.undone_at,
        is_redone=bool(record.is_redone),
        redone_at=record.redone_at,
        is_active=is_active(record),
        metadata={
            k: v for k, v in (record.metadata_ or {}).items() if k not in (PENDING_UNDO, PENDING_REDO)
        },
    )


class ChangeHistoryManager:
    """Writes, lists and inverts change history records."""

    def __init__(self, session: AsyncSession, writer: ScheduleWriter | None = None):
        self.session = session
        self.writer = writer or SessionScheduleWriter(session)
        self.records = ChangeHistoryRepository(session)
        self.assignments = AssignmentRepository(session)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def begin(
        self,
        operation_type: OperationType,
        description: str,
        start: date,
        end: date,
        metadata: dict[str, Any] | None = None,
    ) -> ChangeHistory:
        """Create the record ahead of the operation's first step."""
        record = await self.records.create(
            operation_type=operation_type.value,
            operation_description=description,
            affected_date_start=start,
            affected_date_end=end,
            deleted_assignments=[],
            created_assignment_ids=[],
            redo_assignments=[],
            step_log=[],
            metadata_=metadata or {},
        )
        await self.writer.checkpoint()
        logger.info("Recording %s operation %s", operation_type.value, record.id)
        return record

    async def sync(self, record: ChangeHistory, log: StepLog) -> None:
        """Mirror the apply step log into the record's invertible fields."""
        await self.session.refresh(record)
        record.step_log = log.to_json()
        record.created_assignment_ids = log.created_ids
        record.deleted_assignments = [a.model_dump(mode="json") for a in log.deleted]
        record.redo_assignments = [
            a.model_dump(mode="json", exclude={"id"}) for a in log.created
        ]
        await self.session.flush()

    async def capture_post_state(self, record: ChangeHistory) -> None:
        rows = await self.assignments.list_by_date_range(
            record.affected_date_start, record.affected_date_end
        )
        record.post_state = fingerprint_rows(assignment_info(r) for r in rows)
        await self.session.flush()

    async def finish(self, record: ChangeHistory, log: StepLog) -> None:
        await self.sync(record, log)
        await self.capture_post_state(record)
        await self.writer.checkpoint()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _get(self, history_id: str) -> ChangeHistory:
        try:
            record = await self.records.get_by_id(as_uuid(history_id))
        except ValueError:
            record = None
        if record is None:
            raise NotFoundError("History record", history_id)
        return record

    async def list_history(self, limit: int = 20, days_back: int = 30) -> list[HistoryEntry]:
        since = _utcnow() - timedelta(days=days_back)
        rows = await self.records.list_recent(limit=limit, since=since)
        return [history_entry(r) for r in rows]

    async def _reference_maps(self) -> tuple[dict[str, ProviderInfo], dict[str, ServiceInfo]]:
        providers = await ProviderRepository(self.session).list(active_only=False)
        services = await ServiceRepository(self.session).list()
        return (
            {str(p.id): provider_info(p) for p in providers},
            {str(s.id): service_info(s) for s in services},
        )

    async def _current(self, record: ChangeHistory) -> list[AssignmentInfo]:
        rows = await self.assignments.list_by_date_range(
            record.affected_date_start, record.affected_date_end
        )
        return [assignment_info(r) for r in rows]

    async def _park(self, record: ChangeHistory, key: str, log: Optional[StepLog]) -> None:
        metadata = dict(record.metadata_ or {})
        if log is None:
            metadata.pop(key, None)
        else:
            metadata[key] = log.to_json()
        record.metadata_ = metadata

    @staticmethod
    def _resume(record: ChangeHistory, key: str) -> Optional[StepLog]:
        pending = (record.metadata_ or {}).get(key)
        if not pending:
            return None
        return StepLog.model_validate({"steps": pending})

    # ------------------------------------------------------------------
    # Undo / redo
    # ------------------------------------------------------------------

    async def undo(self, history_id: str, force: bool = False) -> UndoResult:
        """Reverse an operation: delete what it created, restore what it cleared.

        Drift since the operation requires ``force``. Failed steps are not
        rolled back; the record stays active until every step succeeded.
        """
        record = await self._get(history_id)
        if not is_active(record):
            raise HistoryStateError("This operation has already been undone")

        current = await self._current(record)
        skipped = 0
        log = self._resume(record, PENDING_UNDO)
        if log is None:
            providers, services = await self._reference_maps()
            # an operation cut off before finishing has no post state, so the
            # live rows stand in for it
            baseline = record.post_state
            if baseline is None:
                baseline = fingerprint_rows(current)
            conflicts = detect_drift(baseline, current, providers, services)
            if conflicts and not force:
                return UndoResult(
                    success=False,
                    requires_confirmation=True,
                    conflicts=conflicts,
                    message=f"{len(conflicts)} change(s) detected since this operation. "
                    "Undoing will overwrite these changes.",
                )
            live = {row.id: row for row in current}
            created_ids = [str(i) for i in record.created_assignment_ids or []]
            # a cleared slot filled again since the operation keeps its new row
            creates, skipped = _unfilled(
                [
                    AssignmentInfo.model_validate(row)
                    for row in record.deleted_assignments or []
                    if row.get("id") not in live
                ],
                live,
                set(created_ids),
            )
            log = StepLog.build(deletes=[live[i] for i in created_ids if i in live], creates=creates)

        await run_steps(log, self.writer, keep_ids=True)
        await self.session.refresh(record)

        result = UndoResult(
            deleted_count=len(log.deleted),
            restored_count=len(log.created),
            skipped_count=skipped,
            failed_count=len(log.failed),
        )
        if log.complete:
            await self._park(record, PENDING_UNDO, None)
            record.is_undone = True
            record.undone_at = _utcnow()
            record.is_redone = False
            record.redone_at = None
            result.success = True
            result.message = (
                f"Undone: removed {result.deleted_count}, restored {result.restored_count} assignment(s)"
            )
            if skipped:
                result.message += f", skipped {skipped} already filled"
        else:
            await self._park(record, PENDING_UNDO, log)
            result.message = (
                f"Undo incomplete: {result.failed_count} step(s) failed. Retry to finish."
            )
        await self.writer.checkpoint()
        logger.info("Undo of %s: %s", record.id, result.message)
        return result

    async def redo(self, history_id: str) -> RedoResult:
        """Re-apply an undone operation's net effect."""
        record = await self._get(history_id)
        if not record.is_undone or record.is_redone:
            raise HistoryStateError("Only an undone operation can be redone")

        skipped = 0
        log = self._resume(record, PENDING_REDO)
        if log is None:
            live = {row.id: row for row in await self._current(record)}
            restored = [row.get("id") for row in record.deleted_assignments or []]
            # a slot re-filled since the undo keeps its row
            creates, skipped = _unfilled(
                [AssignmentInfo.model_validate(row) for row in record.redo_assignments or []],
                live,
                set(restored),
            )
            log = StepLog.build(deletes=[live[i] for i in restored if i in live], creates=creates)

        await run_steps(log, self.writer)
        await self.session.refresh(record)

        result = RedoResult(
            deleted_count=len(log.deleted),
            created_count=len(log.created),
            skipped_count=skipped,
            failed_count=len(log.failed),
        )
        if log.complete:
            await self._park(record, PENDING_REDO, None)
            record.is_redone = True
            record.redone_at = _utcnow()
            record.created_assignment_ids = log.created_ids
            await self.capture_post_state(record)
            result.success = True
            result.message = f"Redone: recreated {result.created_count} assignment(s)"
            if skipped:
                result.message += f", skipped {skipped} already filled"
        else:
            await self._park(record, PENDING_REDO, log)
            result.message = f"Redo incomplete: {result.failed_count} step(s) failed. Retry to finish."
        await self.writer.checkpoint()
        logger.info("Redo of %s: %s", record.id, result.message)
        return result
