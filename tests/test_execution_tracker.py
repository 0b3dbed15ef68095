from __future__ import annotations

from datetime import UTC, datetime, timedelta

from hypothesis import given
from hypothesis import strategies as st

from yetify.domain.models import (
    ExecutionStatus,
    PerformanceMetrics,
    StrategyPlan,
    StrategyStatus,
    derive_status,
)
from yetify.persistence.memory import InMemoryStrategyRepo
from yetify.services.execution_tracker import ExecutionTracker
from yetify.services.strategy_store import StrategyStore

START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

_MAPPED = {
    ExecutionStatus.STARTED: StrategyStatus.EXECUTING,
    ExecutionStatus.COMPLETED: StrategyStatus.COMPLETED,
    ExecutionStatus.FAILED: StrategyStatus.FAILED,
}


class _Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now


def _setup() -> tuple[StrategyStore, ExecutionTracker, _Clock, str]:
    clock = _Clock()
    store = StrategyStore(InMemoryStrategyRepo(), clock=clock)
    tracker = ExecutionTracker(store, clock=clock)
    saved = store.save(StrategyPlan(goal="Earn yield"), "s")
    assert saved is not None
    return store, tracker, clock, saved.id


def test_started_then_completed_updates_status_in_order() -> None:
    store, tracker, clock, strategy_id = _setup()

    assert tracker.add_execution_record(strategy_id, ExecutionStatus.STARTED) is True
    assert store.get_by_id(strategy_id).status is StrategyStatus.EXECUTING

    clock.now = START + timedelta(seconds=30)
    assert tracker.add_execution_record(strategy_id, "completed", transaction_hash="abc") is True

    strategy = store.get_by_id(strategy_id)
    assert strategy.status is StrategyStatus.COMPLETED
    assert [r.status for r in strategy.execution_history] == [
        ExecutionStatus.STARTED,
        ExecutionStatus.COMPLETED,
    ]
    assert strategy.execution_history[1].transaction_hash == "abc"
    assert strategy.execution_history[1].timestamp == START + timedelta(seconds=30)
    assert strategy.updated_at == START + timedelta(seconds=30)


def test_in_progress_leaves_status_unchanged() -> None:
    store, tracker, _, strategy_id = _setup()
    tracker.add_execution_record(strategy_id, ExecutionStatus.FAILED, error_message="boom")

    tracker.add_execution_record(strategy_id, ExecutionStatus.IN_PROGRESS)

    strategy = store.get_by_id(strategy_id)
    assert strategy.status is StrategyStatus.FAILED
    assert strategy.execution_history[0].error_message == "boom"


def test_record_ids_are_unique_within_a_strategy() -> None:
    store, tracker, _, strategy_id = _setup()

    for _ in range(20):
        tracker.add_execution_record(strategy_id, ExecutionStatus.IN_PROGRESS)

    ids = [record.id for record in store.get_by_id(strategy_id).execution_history]
    assert len(set(ids)) == 20
    assert all(record_id.startswith("exec_") for record_id in ids)


def test_missing_strategy_returns_false_and_writes_nothing() -> None:
    store, tracker, _, strategy_id = _setup()
    before = store.get_by_id(strategy_id)

    assert tracker.add_execution_record("strategy_missing", ExecutionStatus.STARTED) is False
    assert tracker.update_performance_metrics("strategy_missing", PerformanceMetrics()) is False
    assert store.list_all() == [before]


def test_performance_metrics_merge_without_touching_status() -> None:
    store, tracker, clock, strategy_id = _setup()
    tracker.add_execution_record(strategy_id, ExecutionStatus.COMPLETED, transaction_hash="h")
    tracker.update_performance_metrics(strategy_id, PerformanceMetrics(actual_apy=7.5))
    clock.now = START + timedelta(hours=1)

    tracker.update_performance_metrics(strategy_id, PerformanceMetrics(total_return=12.0))

    strategy = store.get_by_id(strategy_id)
    assert strategy.performance == PerformanceMetrics(
        actual_apy=7.5, total_return=12.0, last_updated=START + timedelta(hours=1)
    )
    assert strategy.status is StrategyStatus.COMPLETED
    assert len(strategy.execution_history) == 1


@given(st.lists(st.sampled_from(list(ExecutionStatus)), max_size=12))
def test_status_tracks_latest_mapped_record(statuses: list[ExecutionStatus]) -> None:
    store, tracker, _, strategy_id = _setup()

    for status in statuses:
        tracker.add_execution_record(strategy_id, status)

    strategy = store.get_by_id(strategy_id)
    mapped = [_MAPPED[s] for s in statuses if s in _MAPPED]
    expected = mapped[-1] if mapped else StrategyStatus.SAVED
    assert strategy.status is expected
    assert derive_status(strategy.execution_history) is expected
    assert [r.status for r in strategy.execution_history] == statuses
