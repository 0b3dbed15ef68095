from __future__ import annotations

import pytest

from yetify.services.inflight_registry import InFlightRegistry


def test_second_acquire_for_same_id_is_refused() -> None:
    registry = InFlightRegistry()

    assert registry.try_acquire("strategy_1") is True
    assert registry.try_acquire("strategy_1") is False
    assert registry.try_acquire("strategy_2") is True
    assert [r.strategy_id for r in registry.snapshot()] == ["strategy_1", "strategy_2"]

    registry.release("strategy_1")
    registry.release("strategy_1")
    assert registry.is_in_flight("strategy_1") is False
    assert registry.count() == 1


def test_hold_releases_on_exception() -> None:
    registry = InFlightRegistry()

    with pytest.raises(RuntimeError):
        with registry.hold("strategy_1") as acquired:
            assert acquired is True
            raise RuntimeError("boom")

    assert registry.count() == 0


def test_hold_does_not_release_a_slot_it_did_not_take() -> None:
    registry = InFlightRegistry()
    registry.try_acquire("strategy_1")

    with registry.hold("strategy_1") as acquired:
        assert acquired is False

    assert registry.is_in_flight("strategy_1") is True
