"""DB-backed tests for change history: recording, drift, undo and redo."""

import uuid
from datetime import date, timedelta

import pytest

from cardio_sched.core.repository import AssignmentRepository, ChangeHistoryRepository, TemplateRepository
from cardio_sched.scheduling.exceptions import HistoryStateError, NotFoundError
from cardio_sched.scheduling.history import detect_drift, fingerprint_rows
from cardio_sched.scheduling.models import (
    ApplyOptions,
    AssignmentInfo,
    ChangeType,
    OperationType,
    ProviderInfo,
    TimeBlock,
)
from cardio_sched.scheduling.service import SchedulingService
from cardio_sched.scheduling.snapshot import SessionScheduleWriter, assignment_info

SUN = date(2026, 3, 1)
MON = date(2026, 3, 2)
TUE = date(2026, 3, 3)
SAT = date(2026, 3, 7)


class FlakyWriter(SessionScheduleWriter):
    """Fails chosen inserts or deletes, counted from 1."""

    def __init__(self, session, fail_inserts=(), fail_deletes=()):
        super().__init__(session)
        self.fail_inserts = set(fail_inserts)
        self.fail_deletes = set(fail_deletes)
        self.inserts = 0
        self.deletes = 0

    async def insert_assignment(self, assignment, *, keep_id=False):
        self.inserts += 1
        if self.inserts in self.fail_inserts:
            raise RuntimeError("connection dropped")
        return await super().insert_assignment(assignment, keep_id=keep_id)

    async def delete_assignment(self, assignment_id):
        self.deletes += 1
        if self.deletes in self.fail_deletes:
            raise RuntimeError("connection dropped")
        return await super().delete_assignment(assignment_id)


class ProcessKilled(BaseException):
    pass


class CrashingWriter(SessionScheduleWriter):
    """Dies right after the chosen commit, counted from 1."""

    def __init__(self, session, crash_after):
        super().__init__(session)
        self.crash_after = crash_after
        self.commits = 0

    async def checkpoint(self):
        await super().checkpoint()
        self.commits += 1
        if self.commits == self.crash_after:
            raise ProcessKilled()


async def _template(session, seed, name, entries):
    row = await TemplateRepository(session).create(
        name=name,
        type="weekly",
        entries=[
            dict(
                day_of_week=dow,
                provider_id=uuid.UUID(seed[provider]),
                service_id=uuid.UUID(seed[service]),
                time_block=block,
                room_count=rooms,
            )
            for dow, provider, service, block, rooms in entries
        ],
    )
    await session.commit()
    return str(row.id)


async def _rows(session, start=SUN, end=SAT) -> list[AssignmentInfo]:
    return [assignment_info(r) for r in await AssignmentRepository(session).list_by_date_range(start, end)]


@pytest.fixture
def service(session, settings):
    return SchedulingService(session, settings)


WEEK = [
    (1, "ann", "rooms_am", "AM", 4),
    (2, "bob", "rooms_am", "AM", 3),
    (3, "cat", "rooms_pm", "PM", 2),
]


class TestDriftDetection:
    def test_deleted_modified_added(self):
        kept = AssignmentInfo(id="k", provider_id="p", service_id="s", date=MON, time_block=TimeBlock.AM)
        gone = kept.model_copy(update={"id": "g"})
        changed = kept.model_copy(update={"id": "c"})
        post_state = fingerprint_rows([kept, gone, changed])
        current = [
            kept,
            changed.model_copy(update={"room_count": 5, "notes": "late"}),
            kept.model_copy(update={"id": "n", "time_block": TimeBlock.PM}),
        ]
        providers = {"p": ProviderInfo(id="p", name="Ann Adams", initials="AA")}

        conflicts = detect_drift(post_state, current, providers)

        by_id = {c.id: c for c in conflicts}
        assert set(by_id) == {"g", "c", "n"}
        assert by_id["g"].change_type == ChangeType.DELETED
        assert by_id["c"].change_type == ChangeType.MODIFIED
        assert by_id["c"].details == "Changed: notes, room_count"
        assert by_id["n"].change_type == ChangeType.ADDED
        assert by_id["n"].provider_name == "Ann Adams"
        assert by_id["g"].date == MON

    def test_no_drift(self):
        row = AssignmentInfo(id="k", provider_id="p", service_id="s", date=MON, time_block=TimeBlock.AM)
        assert detect_drift(fingerprint_rows([row]), [row]) == []


class TestUndoRedo:
    async def test_apply_undo_redo_cycle(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)

        result = await service.apply_template(template_id, SUN, SAT)
        assert result.created == 3
        assert result.history_id is not None
        assert len(await _rows(session)) == 3

        undo = await service.history.undo(result.history_id)
        assert undo.success
        assert undo.deleted_count == 3
        assert await _rows(session) == []

        redo = await service.history.redo(result.history_id)
        assert redo.success
        assert redo.created_count == 3
        assert len(await _rows(session)) == 3

        entry = (await service.history.list_history())[0]
        assert entry.operation_type == OperationType.TEMPLATE_APPLY
        assert entry.description == 'Applied template "Week A" to 2026-03-01 - 2026-03-07'
        assert entry.is_undone and entry.is_redone and entry.is_active

        # undo after redo removes the recreated rows
        again = await service.history.undo(result.history_id)
        assert again.success
        assert await _rows(session) == []

    async def test_undo_restores_cleared_rows_with_original_ids(self, session, seed, service):
        original = await AssignmentRepository(session).create(
            provider_id=uuid.UUID(seed["cat"]), service_id=uuid.UUID(seed["rooms_am"]),
            date=MON, time_block="AM", room_count=2, notes="keep me",
        )
        await session.commit()
        original_id = str(original.id)
        template_id = await _template(session, seed, "Week A", WEEK)

        result = await service.apply_template(
            template_id, SUN, SAT, ApplyOptions(clear_existing=True)
        )
        ids = {r.id for r in await _rows(session)}
        assert original_id not in ids

        undo = await service.history.undo(result.history_id)
        assert undo.restored_count == 1
        rows = await _rows(session)
        assert [(r.id, r.notes, r.room_count) for r in rows] == [(original_id, "keep me", 2)]

    async def test_forced_undo_keeps_row_placed_in_cleared_slot(self, session, seed, service):
        await AssignmentRepository(session).create(
            provider_id=uuid.UUID(seed["cat"]), service_id=uuid.UUID(seed["rooms_am"]),
            date=MON, time_block="AM", room_count=2, notes="old",
        )
        await session.commit()
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(
            template_id, SUN, SAT, ApplyOptions(clear_existing=True)
        )
        placed, _ = await service.create_assignment(
            AssignmentInfo(
                provider_id=seed["cat"], service_id=seed["rooms_am"],
                date=MON, time_block=TimeBlock.AM, notes="new",
            )
        )
        await session.commit()

        undo = await service.history.undo(result.history_id, force=True)

        assert undo.success
        assert undo.restored_count == 0
        assert undo.skipped_count == 1
        assert [(r.id, r.notes) for r in await _rows(session)] == [(placed.id, "new")]

    async def test_drift_requires_confirmation(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(template_id, SUN, SAT)

        monday = next(r for r in await _rows(session) if r.date == MON)
        await service.patch_assignment(monday.id, room_count=6)
        await session.commit()

        undo = await service.history.undo(result.history_id)
        assert not undo.success
        assert undo.requires_confirmation
        assert len(undo.conflicts) == 1
        assert undo.conflicts[0].change_type == ChangeType.MODIFIED
        assert undo.conflicts[0].provider_name == "Ann Adams"
        assert undo.message.startswith("1 change(s) detected since this operation")
        assert len(await _rows(session)) == 3

        forced = await service.history.undo(result.history_id, force=True)
        assert forced.success
        assert await _rows(session) == []

    async def test_added_row_is_drift_and_survives_forced_undo(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(template_id, SUN, SAT)
        added, _ = await service.create_assignment(
            AssignmentInfo(provider_id=seed["bob"], service_id=seed["rooms_pm"], date=TUE, time_block=TimeBlock.PM)
        )
        await session.commit()

        undo = await service.history.undo(result.history_id)
        assert [c.change_type for c in undo.conflicts] == [ChangeType.ADDED]

        await service.history.undo(result.history_id, force=True)
        assert [r.id for r in await _rows(session)] == [added.id]

    async def test_state_errors(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(template_id, SUN, SAT)

        with pytest.raises(HistoryStateError):
            await service.history.redo(result.history_id)
        await service.history.undo(result.history_id)
        with pytest.raises(HistoryStateError):
            await service.history.undo(result.history_id)
        await service.history.redo(result.history_id)
        with pytest.raises(HistoryStateError):
            await service.history.redo(result.history_id)

    async def test_unknown_record(self, service, seed):
        with pytest.raises(NotFoundError):
            await service.history.undo(str(uuid.uuid4()))
        with pytest.raises(NotFoundError):
            await service.history.undo("not-a-uuid")

    async def test_no_op_writes_no_history(self, session, seed, service):
        template_id = await _template(session, seed, "Empty week", [])
        result = await service.apply_template(template_id, SUN, SAT)
        assert result.history_id is None
        assert await service.history.list_history() == []

    async def test_redo_skips_slot_filled_since_undo(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(template_id, SUN, SAT)
        await service.history.undo(result.history_id)

        replaced, _ = await service.create_assignment(
            AssignmentInfo(
                provider_id=seed["ann"], service_id=seed["rooms_am"],
                date=MON, time_block=TimeBlock.AM, notes="re-placed by hand",
            )
        )
        await session.commit()

        redo = await service.history.redo(result.history_id)

        assert redo.success
        assert redo.skipped_count == 1
        assert redo.created_count == 2
        assert "skipped 1" in redo.message
        ann_monday = [
            r for r in await _rows(session)
            if r.provider_id == seed["ann"] and r.service_id == seed["rooms_am"] and r.date == MON
        ]
        assert [r.id for r in ann_monday] == [replaced.id]

        # the hand-placed row is not part of the operation
        again = await service.history.undo(result.history_id)
        assert again.success
        assert again.deleted_count == 2
        assert [r.id for r in await _rows(session)] == [replaced.id]


class TestPartialFailure:
    async def test_half_applied_operation_is_undoable(self, session, seed, settings):
        writer = FlakyWriter(session, fail_inserts={2})
        service = SchedulingService(session, settings, writer=writer)
        template_id = await _template(session, seed, "Week A", WEEK)

        result = await service.apply_template(template_id, SUN, SAT)

        assert result.created == 2
        assert result.failed == 1
        assert result.created + result.failed + result.skipped == result.slots_attempted
        assert len(await _rows(session)) == 2

        undo = await service.history.undo(result.history_id)
        assert undo.success
        assert undo.deleted_count == 2
        assert await _rows(session) == []

    async def test_undo_resumes_after_failed_step(self, session, seed, settings):
        writer = FlakyWriter(session, fail_deletes={2})
        service = SchedulingService(session, settings, writer=writer)
        template_id = await _template(session, seed, "Week A", WEEK)
        result = await service.apply_template(template_id, SUN, SAT)

        first = await service.history.undo(result.history_id)
        assert not first.success
        assert first.failed_count == 1
        assert len(await _rows(session)) == 1
        entry = (await service.history.list_history())[0]
        assert entry.is_active
        assert "pending_undo" not in entry.metadata

        second = await service.history.undo(result.history_id)
        assert second.success
        assert await _rows(session) == []

    async def test_interrupted_operation_records_committed_rows(self, session, seed, settings):
        writer = CrashingWriter(session, crash_after=3)
        service = SchedulingService(session, settings, writer=writer)
        template_id = await _template(session, seed, "Week A", WEEK)

        # one commit opens the record, then one per step
        with pytest.raises(ProcessKilled):
            await service.apply_template(template_id, SUN, SAT)
        await session.rollback()

        committed = {r.id for r in await _rows(session)}
        [record] = await ChangeHistoryRepository(session).list_recent()
        assert len(committed) == 2
        assert {str(i) for i in record.created_assignment_ids} == committed
        assert record.post_state is None

        undo = await SchedulingService(session, settings).history.undo(str(record.id))
        assert undo.success
        assert undo.deleted_count == 2
        assert await _rows(session) == []


class TestHistoryListing:
    async def test_alternating_metadata(self, session, seed, service):
        a = await _template(session, seed, "Week A", WEEK[:1])
        b = await _template(session, seed, "Week B", WEEK[1:2])

        result = await service.apply_alternating([a, b], [0, 1], SUN, SAT + timedelta(days=7))

        assert result.created == 2
        entry = (await service.history.list_history())[0]
        assert entry.operation_type == OperationType.TEMPLATE_APPLY_ALTERNATING
        assert entry.metadata["pattern"] == [0, 1]
        assert [w["template_name"] for w in entry.metadata["week_applications"]] == ["Week A", "Week B"]

    async def test_limit_and_order(self, session, seed, service):
        template_id = await _template(session, seed, "Week A", WEEK)
        first = await service.apply_template(template_id, SUN, SAT)
        second = await service.apply_template(
            template_id, SUN + timedelta(days=7), SAT + timedelta(days=7)
        )
        entries = await service.history.list_history(limit=1)
        assert [e.id for e in entries] == [second.history_id]
        assert first.history_id != second.history_id
