import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from enums import GenerationErrorKind, RecurrenceEnum, TemplateStateEnum
from models import GenerationLockRow, Task
from schemas import TaskRecord
from services.generation_lock import DatabaseGenerationLock, ProcessGenerationLock
from services.memory_task_store import InMemoryTaskStore
from services.recurring_task.scheduler import GenerationScheduler
from utils.error_handler import ConcurrentGenerationInProgress, PersistenceFailure

TODAY = date(2024, 6, 15)


def test_generates_instance_for_due_template(store, make_template):
    template = make_template(
        store, TODAY, pattern=RecurrenceEnum.WEEKLY, title="Weekly review",
        description="Inbox zero", category="Work", priority=3, user_id=7,
    )

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 1
    assert result.per_template_errors == []
    instances = store.find_instances(template.id)
    assert len(instances) == 1
    instance = instances[0]
    assert instance.id == result.generated_task_ids[0]
    assert instance.title == "Weekly review"
    assert instance.description == "Inbox zero"
    assert instance.category == "Work"
    assert instance.priority == 3
    assert instance.user_id == 7
    assert instance.due_date == TODAY
    assert instance.is_recurring is False
    assert instance.original_task_id == template.id
    assert instance.completed is False

    advanced = store.find_template(template.id)
    assert advanced.next_due_date == TODAY + timedelta(days=7)
    assert advanced.is_recurring is True
    assert advanced.completed is False


def test_second_pass_at_same_time_generates_nothing(store, make_template):
    make_template(store, TODAY - timedelta(days=3))
    make_template(store, TODAY, pattern=RecurrenceEnum.MONTHLY)
    scheduler = GenerationScheduler(store)

    first = scheduler.run_generation_pass(TODAY)
    second = scheduler.run_generation_pass(TODAY)

    assert first.generated_count == 5
    assert second.generated_count == 0
    assert second.per_template_errors == []


def test_future_templates_are_left_alone(store, make_template):
    template = make_template(store, TODAY + timedelta(days=1))

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 0
    assert store.find_template(template.id).next_due_date == TODAY + timedelta(days=1)


def test_catch_up_is_capped_per_template(store, make_template):
    original = TODAY - timedelta(days=10)
    template = make_template(store, original)

    result = GenerationScheduler(store, max_catch_up_per_template=5).run_generation_pass(TODAY)

    assert result.generated_count == 5
    assert store.find_template(template.id).next_due_date == original + timedelta(days=5)
    assert [i.due_date for i in store.find_instances(template.id)] == [
        original + timedelta(days=offset) for offset in range(5)
    ]


def test_backlog_is_finished_by_later_passes(store, make_template):
    original = TODAY - timedelta(days=10)
    template = make_template(store, original)
    scheduler = GenerationScheduler(store, max_catch_up_per_template=5)

    counts = [scheduler.run_generation_pass(TODAY).generated_count for _ in range(4)]

    assert counts == [5, 5, 1, 0]
    dates = [i.due_date for i in store.find_instances(template.id)]
    assert dates == [original + timedelta(days=offset) for offset in range(11)]
    assert store.find_template(template.id).next_due_date == TODAY + timedelta(days=1)


def test_cap_applies_to_each_template_separately(store, make_template):
    first = make_template(store, TODAY - timedelta(days=9))
    second = make_template(store, TODAY - timedelta(days=9), pattern=RecurrenceEnum.WEEKLY)

    result = GenerationScheduler(store, max_catch_up_per_template=3).run_generation_pass(TODAY)

    assert result.generated_count == 5
    assert len(store.find_instances(first.id)) == 3
    assert len(store.find_instances(second.id)) == 2


def test_final_occurrence_on_end_date_is_generated_then_template_ends(store, make_template):
    end = TODAY
    template = make_template(store, end, end_date=end)
    scheduler = GenerationScheduler(store)

    result = scheduler.run_generation_pass(end + timedelta(days=30))

    assert result.generated_count == 1
    ended = store.find_template(template.id)
    assert ended.is_recurring is False
    assert ended.state == TemplateStateEnum.ENDED
    assert ended.next_due_date == end + timedelta(days=1)
    assert [i.due_date for i in store.find_instances(template.id)] == [end]

    assert scheduler.run_generation_pass(end + timedelta(days=60)).generated_count == 0


def test_catch_up_never_passes_end_date(store, make_template):
    start = TODAY - timedelta(days=10)
    template = make_template(store, start, end_date=start + timedelta(days=2))

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 3
    dates = [i.due_date for i in store.find_instances(template.id)]
    assert dates == [start, start + timedelta(days=1), start + timedelta(days=2)]
    assert max(dates) <= start + timedelta(days=2)
    assert store.find_template(template.id).is_recurring is False


def test_weekly_template_ends_when_step_overshoots_end_date(store, make_template):
    start = date(2024, 6, 3)
    template = make_template(store, start, pattern=RecurrenceEnum.WEEKLY, end_date=date(2024, 6, 12))

    result = GenerationScheduler(store).run_generation_pass(date(2024, 7, 1))

    assert result.generated_count == 2
    assert [i.due_date for i in store.find_instances(template.id)] == [date(2024, 6, 3), date(2024, 6, 10)]
    assert store.find_template(template.id).state == TemplateStateEnum.ENDED


def test_monthly_chain_steps_from_each_occurrence(store, make_template):
    template = make_template(store, date(2024, 1, 31), pattern=RecurrenceEnum.MONTHLY)

    GenerationScheduler(store).run_generation_pass(date(2024, 4, 30))

    assert [i.due_date for i in store.find_instances(template.id)] == [
        date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 29), date(2024, 4, 29),
    ]


def test_next_due_date_advances_one_step_per_occurrence(store, make_template):
    template = make_template(store, date(2024, 1, 1), pattern=RecurrenceEnum.DAILY, interval=3)
    scheduler = GenerationScheduler(store, max_catch_up_per_template=2)

    seen = [store.find_template(template.id).next_due_date]
    for _ in range(3):
        scheduler.run_generation_pass(date(2024, 1, 31))
        seen.append(store.find_template(template.id).next_due_date)

    assert seen == [date(2024, 1, 1), date(2024, 1, 7), date(2024, 1, 13), date(2024, 1, 19)]


def test_pass_accepts_timestamps_in_reference_timezone(memory_store, make_template):
    make_template(memory_store, date(2024, 3, 1))
    scheduler = GenerationScheduler(memory_store, reference_timezone="Asia/Tokyo")

    # 2024-02-29 20:00 UTC is already March 1st in Tokyo
    result = scheduler.run_generation_pass(datetime(2024, 2, 29, 20, 0, tzinfo=timezone.utc))

    assert result.reference_date == date(2024, 3, 1)
    assert result.generated_count == 1


def test_invalid_stored_definition_is_reported_per_template(memory_store, make_template):
    healthy = make_template(memory_store, TODAY)
    memory_store.put(TaskRecord(
        id=100, title="Broken interval", is_recurring=True,
        recurrence_pattern="daily", recurrence_interval=0, next_due_date=TODAY,
    ))
    memory_store.put(TaskRecord(
        id=101, title="Broken pattern", is_recurring=True,
        recurrence_pattern="fortnightly", recurrence_interval=1, next_due_date=TODAY,
    ))

    result = GenerationScheduler(memory_store).run_generation_pass(TODAY)

    assert result.generated_count == 1
    assert len(memory_store.find_instances(healthy.id)) == 1
    kinds = {error.template_id: error.kind for error in result.per_template_errors}
    assert kinds == {
        100: GenerationErrorKind.INVALID_INTERVAL,
        101: GenerationErrorKind.INVALID_PATTERN,
    }
    assert memory_store.find_instances(100) == []
    assert memory_store.find_task(100).next_due_date == TODAY


def test_recurring_row_without_pattern_is_reported(db, sql_store):
    db.add(Task(title="No pattern", is_recurring=True, recurrence_pattern="none", next_due_date=TODAY))
    db.commit()

    result = GenerationScheduler(sql_store).run_generation_pass(TODAY)

    assert result.generated_count == 0
    assert [error.kind for error in result.per_template_errors] == [GenerationErrorKind.INVALID_PATTERN]


class FailingStore(InMemoryTaskStore):
    """Fails the transactional step for selected templates."""

    def __init__(self):
        super().__init__()
        self.failing_ids = set()

    def insert_instance_and_advance_template(self, instance, template):
        if template.id in self.failing_ids:
            raise PersistenceFailure(f"disk full while writing template {template.id}", template.id)
        return super().insert_instance_and_advance_template(instance, template)


def test_persistence_failure_leaves_no_partial_state_and_is_retried(make_template):
    store = FailingStore()
    broken = make_template(store, TODAY - timedelta(days=2))
    healthy = make_template(store, TODAY)
    store.failing_ids.add(broken.id)
    scheduler = GenerationScheduler(store)

    result = scheduler.run_generation_pass(TODAY)

    assert result.generated_count == 1
    assert [(e.template_id, e.kind) for e in result.per_template_errors] == [
        (broken.id, GenerationErrorKind.PERSISTENCE_FAILURE)
    ]
    assert store.find_instances(broken.id) == []
    assert store.find_template(broken.id).next_due_date == TODAY - timedelta(days=2)
    assert len(store.find_instances(healthy.id)) == 1

    store.failing_ids.clear()
    retry = scheduler.run_generation_pass(TODAY)

    assert retry.generated_count == 3
    assert [i.due_date for i in store.find_instances(broken.id)] == [
        TODAY - timedelta(days=2), TODAY - timedelta(days=1), TODAY,
    ]


def test_failure_mid_catch_up_keeps_earlier_occurrences(make_template):
    class FailsOnThirdStep(InMemoryTaskStore):
        calls = 0

        def insert_instance_and_advance_template(self, instance, template):
            self.calls += 1
            if self.calls == 3:
                raise PersistenceFailure("connection reset", template.id)
            return super().insert_instance_and_advance_template(instance, template)

    store = FailsOnThirdStep()
    template = make_template(store, TODAY - timedelta(days=4))

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 2
    assert len(result.per_template_errors) == 1
    assert store.find_template(template.id).next_due_date == TODAY - timedelta(days=2)


def test_unexpected_errors_are_recorded_not_raised(make_template):
    class ExplodingStore(InMemoryTaskStore):
        def insert_instance_and_advance_template(self, instance, template):
            raise RuntimeError("boom")

    store = ExplodingStore()
    template = make_template(store, TODAY)

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 0
    assert result.per_template_errors[0].template_id == template.id
    assert result.per_template_errors[0].kind == GenerationErrorKind.UNEXPECTED_ERROR
    assert "boom" in result.per_template_errors[0].message


def test_duplicate_occurrence_is_rejected_by_sql_store(db, sql_store, make_template):
    template = make_template(sql_store, TODAY)
    db.add(Task(title="Stray copy", original_task_id=template.id, due_date=TODAY))
    db.commit()

    result = GenerationScheduler(sql_store).run_generation_pass(TODAY)

    assert result.generated_count == 0
    assert result.per_template_errors[0].kind == GenerationErrorKind.PERSISTENCE_FAILURE
    assert sql_store.find_template(template.id).next_due_date == TODAY
    assert len(sql_store.find_instances(template.id)) == 1


def test_template_deleted_mid_pass_gets_no_instance(make_template):
    class DeletingStore(InMemoryTaskStore):
        doomed = None

        def find_due_templates(self, today):
            due = super().find_due_templates(today)
            self.delete_template(self.doomed)
            return due

    store = DeletingStore()
    doomed = make_template(store, TODAY)
    survivor = make_template(store, TODAY)
    store.doomed = doomed.id

    result = GenerationScheduler(store).run_generation_pass(TODAY)

    assert result.generated_count == 1
    assert [(e.template_id, e.kind) for e in result.per_template_errors] == [
        (doomed.id, GenerationErrorKind.TEMPLATE_DELETED)
    ]
    assert store.find_instances(doomed.id) == []
    assert len(store.find_instances(survivor.id)) == 1


def test_deleted_template_is_never_generated_again(store, make_template):
    template = make_template(store, TODAY - timedelta(days=1))
    scheduler = GenerationScheduler(store)
    scheduler.run_generation_pass(TODAY - timedelta(days=1))

    assert store.delete_template(template.id) is True
    result = scheduler.run_generation_pass(TODAY + timedelta(days=30))

    assert result.generated_count == 0
    assert store.find_template(template.id) is None


def test_pass_refused_while_lock_is_held(store, make_template):
    make_template(store, TODAY)
    lock = ProcessGenerationLock()
    scheduler = GenerationScheduler(store, lock=lock)

    with lock.hold():
        with pytest.raises(ConcurrentGenerationInProgress):
            scheduler.run_generation_pass(TODAY)

    assert scheduler.run_generation_pass(TODAY).generated_count == 1


def test_lock_released_when_pass_fails(make_template):
    class BrokenScanStore(InMemoryTaskStore):
        def find_due_templates(self, today):
            raise PersistenceFailure("database unavailable")

    lock = ProcessGenerationLock()
    scheduler = GenerationScheduler(BrokenScanStore(), lock=lock)

    with pytest.raises(PersistenceFailure):
        scheduler.run_generation_pass(TODAY)

    assert lock.locked is False


def test_overlapping_passes_generate_each_occurrence_once(make_template):
    class BlockingStore(InMemoryTaskStore):
        def __init__(self):
            super().__init__()
            self.scanning = threading.Event()
            self.proceed = threading.Event()

        def find_due_templates(self, today):
            self.scanning.set()
            assert self.proceed.wait(timeout=5)
            return super().find_due_templates(today)

    store = BlockingStore()
    for offset in range(3):
        make_template(store, TODAY - timedelta(days=offset))
    lock = ProcessGenerationLock()
    results = []

    first = threading.Thread(
        target=lambda: results.append(GenerationScheduler(store, lock=lock).run_generation_pass(TODAY))
    )
    first.start()
    assert store.scanning.wait(timeout=5)

    with pytest.raises(ConcurrentGenerationInProgress):
        GenerationScheduler(store, lock=lock).run_generation_pass(TODAY)

    store.proceed.set()
    first.join(timeout=5)

    assert results[0].generated_count == 6
    assert GenerationScheduler(store, lock=lock).run_generation_pass(TODAY).generated_count == 0


def test_database_lock_guards_pass_and_is_released(session_factory, sql_store, make_template):
    make_template(sql_store, TODAY)
    lock = DatabaseGenerationLock(session_factory)
    rival = DatabaseGenerationLock(session_factory)

    assert rival.try_acquire() is True
    with pytest.raises(ConcurrentGenerationInProgress):
        GenerationScheduler(sql_store, lock=lock).run_generation_pass(TODAY)
    rival.release()

    result = GenerationScheduler(sql_store, lock=lock).run_generation_pass(TODAY)

    assert result.generated_count == 1
    check = session_factory()
    try:
        assert check.query(GenerationLockRow).count() == 0
    finally:
        check.close()


def test_time_budget_leaves_remaining_templates_for_next_pass(memory_store, make_template):
    for _ in range(3):
        make_template(memory_store, TODAY)
    ticks = iter([0.0, 0.0, 0.5, 2.0, 2.0, 2.0])
    scheduler = GenerationScheduler(memory_store, pass_time_budget=1.0, clock=lambda: next(ticks))

    result = scheduler.run_generation_pass(TODAY)

    assert result.generated_count == 2
    assert result.templates_processed == 2
    assert result.budget_exhausted is True

    follow_up = GenerationScheduler(memory_store).run_generation_pass(TODAY)
    assert follow_up.generated_count == 1


def test_cap_must_be_positive(memory_store):
    with pytest.raises(ValueError):
        GenerationScheduler(memory_store, max_catch_up_per_template=0)
