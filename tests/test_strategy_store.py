from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta

import pytest

from yetify.domain.errors import StorageError
from yetify.domain.models import (
    ExecutionRecord,
    ExecutionStatus,
    StrategyPlan,
    StrategyStatus,
    StrategyStep,
)
from yetify.persistence.memory import InMemoryStrategyRepo
from yetify.services.strategy_store import StrategyStore


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


class _FailingRepo(InMemoryStrategyRepo):
    def __init__(self, *, fail_load: bool = False, fail_save: bool = False) -> None:
        super().__init__()
        self.fail_load = fail_load
        self.fail_save = fail_save

    def load_document(self) -> str | None:
        if self.fail_load:
            raise StorageError("disk unavailable", operation="load", target="memory")
        return super().load_document()

    def save_document(self, body: str) -> None:
        if self.fail_save:
            raise StorageError("quota exceeded", operation="save", target="memory")
        super().save_document(body)


START = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _plan(goal: str = "Earn yield on idle NEAR", **overrides) -> StrategyPlan:
    return StrategyPlan(
        goal=goal,
        chains=("NEAR",),
        protocols=("Ref Finance",),
        steps=(StrategyStep(action="stake", protocol="Ref Finance", asset="NEAR"),),
        **overrides,
    )


def _store(repo: InMemoryStrategyRepo | None = None) -> tuple[StrategyStore, _Clock]:
    clock = _Clock(START)
    return StrategyStore(repo or InMemoryStrategyRepo(), clock=clock), clock


def test_save_then_get_round_trips_plan_fields() -> None:
    store, _ = _store()

    saved = store.save(_plan(), "Near farm", tags=["near"])

    assert saved is not None
    loaded = store.get_by_id(saved.id)
    assert loaded == saved
    assert loaded.goal == "Earn yield on idle NEAR"
    assert loaded.name == "Near farm"
    assert loaded.created_at == START
    assert loaded.status is StrategyStatus.SAVED
    assert loaded.plan.id == saved.id


def test_generated_ids_are_time_based_and_unique() -> None:
    store, _ = _store()

    ids = {store.generate_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(re.fullmatch(r"strategy_1714564800000_[0-9a-f]{12}", i) for i in ids)


def test_save_keeps_plan_id_but_never_reuses_one() -> None:
    store, _ = _store()

    first = store.save(_plan(id="strategy_fixed"), "A")
    second = store.save(_plan(id="strategy_fixed"), "B")

    assert first is not None and second is not None
    assert first.id == "strategy_fixed"
    assert second.id != "strategy_fixed"


def test_delete_twice_returns_false_the_second_time() -> None:
    store, _ = _store()
    keep = store.save(_plan(), "keep")
    gone = store.save(_plan(), "gone")
    assert keep is not None and gone is not None

    assert store.delete(gone.id) is True
    assert store.delete(gone.id) is False
    assert [s.id for s in store.list_all()] == [keep.id]


def test_update_merges_fields_and_stamps_updated_at() -> None:
    store, clock = _store()
    saved = store.save(_plan(), "old")
    assert saved is not None
    clock.now = START + timedelta(minutes=5)

    updated = store.update(saved.id, name="new", risk_level="low", tags=["a", "b"])

    assert updated is not None
    assert updated.name == "new"
    assert updated.plan.risk_level == "low"
    assert updated.tags == ("a", "b")
    assert updated.updated_at == START + timedelta(minutes=5)
    assert store.get_by_id(saved.id) == updated


def test_updated_at_never_moves_backwards() -> None:
    store, clock = _store()
    saved = store.save(_plan(), "s")
    assert saved is not None
    clock.now = START + timedelta(minutes=5)
    store.update(saved.id, name="later")
    clock.now = START + timedelta(minutes=1)

    updated = store.update(saved.id, name="skewed")

    assert updated is not None
    assert updated.updated_at == START + timedelta(minutes=5)


def test_update_missing_id_returns_none_without_writing() -> None:
    repo = InMemoryStrategyRepo()
    store, _ = _store(repo)
    store.save(_plan(), "s")
    writes = repo.save_count

    assert store.update("strategy_missing", name="x") is None
    assert repo.save_count == writes


@pytest.mark.parametrize("field", ["id", "created_at", "execution_history", "status"])
def test_update_rejects_immutable_fields(field: str) -> None:
    store, _ = _store()
    saved = store.save(_plan(), "s")
    assert saved is not None

    with pytest.raises(ValueError):
        store.update(saved.id, **{field: "x"})


def test_search_matches_name_goal_and_tags_case_insensitively() -> None:
    store, _ = _store()
    by_name = store.save(_plan("Stable income"), "Aave Saver")
    by_goal = store.save(_plan("Stake ETH with Lido"), "Plan B")
    by_tag = store.save(_plan("Something else"), "Plan C", tags=["LidoFans"])
    store.save(_plan("Unrelated"), "Plan D")

    assert [s.id for s in store.search("aave")] == [by_name.id]
    assert {s.id for s in store.search("LIDO")} == {by_goal.id, by_tag.id}
    assert len(store.search("  ")) == 4


def test_list_by_status_filters_on_derived_status() -> None:
    store, _ = _store()
    idle = store.save(_plan(), "idle")
    running = store.save(_plan(), "running")
    assert idle is not None and running is not None
    store.append_execution_record(
        running.id,
        lambda current: ExecutionRecord(
            id="exec_1", timestamp=START, status=ExecutionStatus.STARTED
        ),
    )

    assert [s.id for s in store.list_by_status("executing")] == [running.id]
    assert [s.id for s in store.list_by_status(StrategyStatus.SAVED)] == [idle.id]


def test_load_failure_surfaces_as_empty_results(caplog) -> None:
    store, _ = _store(_FailingRepo(fail_load=True))

    with caplog.at_level(logging.ERROR):
        assert store.list_all() == []
        assert store.get_by_id("strategy_1") is None
        assert store.save(_plan(), "s") is None
        assert store.delete("strategy_1") is False

    assert "strategy_store_load_failed" in caplog.text


def test_save_failure_returns_none_and_leaves_collection_unchanged() -> None:
    repo = _FailingRepo()
    store, _ = _store(repo)
    kept = store.save(_plan(), "kept")
    repo.fail_save = True

    assert store.save(_plan(), "lost") is None
    assert store.delete(kept.id) is False
    assert [s.id for s in store.list_all()] == [kept.id]


def test_undecodable_collection_is_never_overwritten() -> None:
    repo = InMemoryStrategyRepo(body="{corrupt")
    store, _ = _store(repo)

    assert store.list_all() == []
    assert store.save(_plan(), "s") is None
    assert repo.body == "{corrupt"


@pytest.mark.parametrize(
    "body",
    [
        "[1]",
        '["strategy"]',
        '[{"id": "s", "name": "n", "goal": "g", "createdAt": "2024-05-01T12:00:00+00:00",'
        ' "executionHistory": [7]}]',
        '[{"id": "s", "name": "n", "goal": "g", "createdAt": "2024-05-01T12:00:00+00:00",'
        ' "steps": [null]}]',
    ],
)
def test_collection_with_non_object_items_reads_as_empty(body: str) -> None:
    repo = InMemoryStrategyRepo(body=body)
    store, _ = _store(repo)

    assert store.list_all() == []
    assert store.get_by_id("s") is None
    assert store.search("g") == []
    assert store.update("s", name="renamed") is None
    assert repo.body == body


def test_missing_id_mutations_log_not_found_and_return_none(caplog) -> None:
    store, _ = _store()
    store.save(_plan(), "s")

    with caplog.at_level(logging.WARNING, logger="yetify.services.strategy_store"):
        assert store.replace_strategy("strategy_missing", lambda current: current) is None
        assert (
            store.append_execution_record(
                "strategy_missing",
                lambda current: ExecutionRecord(
                    id="exec_1", timestamp=current.created_at, status=ExecutionStatus.STARTED
                ),
            )
            is None
        )

    misses = [r for r in caplog.records if r.getMessage() == "strategy_not_found"]
    assert [r.extra["operation"] for r in misses] == ["replace", "append_execution_record"]
    assert {r.extra["strategy_id"] for r in misses} == {"strategy_missing"}
