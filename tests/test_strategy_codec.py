from __future__ import annotations

import json
import math
from datetime import UTC, datetime

import pytest

from yetify.domain.models import (
    ExecutionRecord,
    ExecutionStatus,
    PerformanceMetrics,
    SavedStrategy,
    StrategyPlan,
    StrategyStatus,
    StrategyStep,
)
from yetify.domain.strategy_codec import (
    dump_collection,
    dump_plan_for_ledger,
    dump_strategy,
    load_collection,
    load_strategy,
    parse_timestamp,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _plan(**overrides) -> StrategyPlan:
    fields = {
        "goal": "Earn yield on idle NEAR",
        "chains": ("NEAR",),
        "protocols": ("Ref Finance",),
        "steps": (
            StrategyStep(
                action="yield_farm", protocol="Ref Finance", asset="NEAR", expected_apy=15.1
            ),
        ),
        "estimated_apy": 15.1,
        "estimated_tvl": "$1,500",
    }
    fields.update(overrides)
    return StrategyPlan(**fields)


def _strategy() -> SavedStrategy:
    return SavedStrategy(
        id="strategy_1",
        name="Near farm",
        plan=_plan(),
        created_at=NOW,
        execution_history=(
            ExecutionRecord(id="exec_1", timestamp=NOW, status=ExecutionStatus.STARTED),
            ExecutionRecord(
                id="exec_2",
                timestamp=NOW,
                status=ExecutionStatus.COMPLETED,
                transaction_hash="tx123",
            ),
        ),
        performance=PerformanceMetrics(actual_apy=12.5, last_updated=NOW),
        tags=("near",),
    )


def test_dump_strategy_uses_camel_case_layout() -> None:
    doc = dump_strategy(_strategy())

    assert doc["id"] == "strategy_1"
    assert doc["riskLevel"] == "medium"
    assert doc["estimatedApy"] == 15.1
    assert doc["status"] == "completed"
    assert doc["steps"][0]["expectedApy"] == 15.1
    assert doc["executionHistory"][1]["transactionHash"] == "tx123"
    assert doc["performance"]["actualApy"] == 12.5
    assert doc["createdAt"] == "2024-05-01T12:00:00+00:00"


def test_collection_round_trip_keeps_fields_and_order() -> None:
    original = _strategy()

    restored = load_collection(dump_collection([original]))

    assert restored == [original]
    assert [r.id for r in restored[0].execution_history] == ["exec_1", "exec_2"]


def test_stored_status_is_ignored_on_load() -> None:
    doc = dump_strategy(_strategy())
    doc["status"] = "saved"

    assert load_strategy(doc).status is StrategyStatus.COMPLETED


def test_load_accepts_epoch_millisecond_timestamps() -> None:
    doc = dump_strategy(_strategy())
    doc["createdAt"] = 1714564800000

    assert load_strategy(doc).created_at == NOW


def test_empty_or_missing_collection_loads_as_empty() -> None:
    assert load_collection(None) == []
    assert load_collection("  ") == []


@pytest.mark.parametrize("raw", ['{"id": "x"}', "[{}]", "not json", "[1]", '[["nested"]]'])
def test_malformed_collection_raises_value_error(raw: str) -> None:
    with pytest.raises(ValueError):
        load_collection(raw)


def test_parse_timestamp_normalizes_naive_datetimes() -> None:
    assert parse_timestamp("2024-05-01T12:00:00") == NOW
    with pytest.raises(ValueError):
        parse_timestamp(True)


def test_ledger_payload_uses_contract_schema() -> None:
    raw = dump_plan_for_ledger(
        _plan(id="strategy_1"), creator="alice.testnet", created_at_ms=1714564800000
    )

    payload = json.loads(raw)
    assert payload["id"] == "strategy_1"
    assert payload["risk_level"] == "medium"
    assert payload["estimated_apy"] == 15.1
    assert payload["steps"] == [
        {
            "action": "yield_farm",
            "protocol": "Ref Finance",
            "asset": "NEAR",
            "expected_apy": 15.1,
            "amount": None,
        }
    ]
    assert payload["creator"] == "alice.testnet"
    assert payload["created_at"] == 1714564800000
    assert payload["warnings"] is None


def test_ledger_payload_requires_id_and_finite_numbers() -> None:
    with pytest.raises(ValueError):
        dump_plan_for_ledger(_plan(), creator="alice.testnet", created_at_ms=0)
    with pytest.raises(ValueError):
        dump_plan_for_ledger(
            _plan(id="strategy_1", estimated_apy=math.inf), creator="a", created_at_ms=0
        )
