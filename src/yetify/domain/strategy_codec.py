"""Conversions between domain objects and their persisted / on-chain JSON forms.

The local collection uses the camelCase document layout the web client has always
written; the ledger contract expects snake_case fields plus ``creator`` and
``created_at``.
"""

from __future__ import annotations

import json
import math
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from yetify.domain.models import (
    ExecutionRecord,
    ExecutionStatus,
    PerformanceMetrics,
    SavedStrategy,
    StrategyPlan,
    StrategyStep,
    ensure_utc,
)


def dump_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=UTC)
    if isinstance(value, str) and value.strip():
        return ensure_utc(datetime.fromisoformat(value.strip()))
    raise ValueError(f"invalid timestamp: {value!r}")


def _optional_float(value: object) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"invalid number: {value!r}")
    return float(value)  # type: ignore[arg-type]


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


def _str_tuple(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Sequence):
        raise ValueError(f"expected a list of strings, got {type(value).__name__}")
    return tuple(str(item) for item in value)


def _mapping(value: object, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{what} must be a JSON object, got {type(value).__name__}")
    return value


def _put(doc: dict[str, Any], key: str, value: object) -> None:
    if value is not None:
        doc[key] = value


def dump_step(step: StrategyStep) -> dict[str, Any]:
    doc: dict[str, Any] = {"action": step.action, "protocol": step.protocol, "asset": step.asset}
    _put(doc, "amount", step.amount)
    _put(doc, "expectedApy", step.expected_apy)
    return doc


def load_step(doc: Mapping[str, Any]) -> StrategyStep:
    doc = _mapping(doc, "step")
    return StrategyStep(
        action=str(doc["action"]),
        protocol=str(doc["protocol"]),
        asset=str(doc["asset"]),
        amount=_optional_str(doc.get("amount")),
        expected_apy=_optional_float(doc.get("expectedApy", doc.get("expected_apy"))),
    )


def dump_plan_fields(plan: StrategyPlan) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    _put(doc, "id", plan.id)
    doc.update(
        {
            "goal": plan.goal,
            "chains": list(plan.chains),
            "protocols": list(plan.protocols),
            "steps": [dump_step(step) for step in plan.steps],
            "riskLevel": plan.risk_level,
        }
    )
    _put(doc, "estimatedApy", plan.estimated_apy)
    _put(doc, "estimatedTvl", plan.estimated_tvl)
    _put(doc, "confidence", plan.confidence)
    _put(doc, "reasoning", plan.reasoning)
    if plan.warnings is not None:
        doc["warnings"] = list(plan.warnings)
    return doc


def load_plan_fields(doc: Mapping[str, Any]) -> StrategyPlan:
    steps_raw = doc.get("steps") or []
    if not isinstance(steps_raw, Sequence) or isinstance(steps_raw, str):
        raise ValueError("steps must be a list")
    warnings_raw = doc.get("warnings")
    return StrategyPlan(
        id=_optional_str(doc.get("id")),
        goal=str(doc["goal"]),
        chains=_str_tuple(doc.get("chains")),
        protocols=_str_tuple(doc.get("protocols")),
        steps=tuple(load_step(step) for step in steps_raw),
        risk_level=str(doc.get("riskLevel") or "medium"),
        estimated_apy=_optional_float(doc.get("estimatedApy")),
        estimated_tvl=_optional_str(doc.get("estimatedTvl")),
        confidence=_optional_float(doc.get("confidence")),
        reasoning=_optional_str(doc.get("reasoning")),
        warnings=None if warnings_raw is None else _str_tuple(warnings_raw),
    )


def dump_execution_record(record: ExecutionRecord) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "id": record.id,
        "timestamp": dump_timestamp(record.timestamp),
        "status": record.status.value,
    }
    _put(doc, "transactionHash", record.transaction_hash)
    _put(doc, "errorMessage", record.error_message)
    _put(doc, "gasUsed", record.gas_used)
    _put(doc, "actualReturn", record.actual_return)
    return doc


def load_execution_record(doc: Mapping[str, Any]) -> ExecutionRecord:
    doc = _mapping(doc, "execution record")
    return ExecutionRecord(
        id=str(doc["id"]),
        timestamp=parse_timestamp(doc["timestamp"]),
        status=ExecutionStatus(str(doc["status"])),
        transaction_hash=_optional_str(doc.get("transactionHash")),
        error_message=_optional_str(doc.get("errorMessage")),
        gas_used=_optional_str(doc.get("gasUsed")),
        actual_return=_optional_float(doc.get("actualReturn")),
    )


def dump_performance(metrics: PerformanceMetrics) -> dict[str, Any]:
    doc: dict[str, Any] = {}
    _put(doc, "actualApy", metrics.actual_apy)
    _put(doc, "totalReturn", metrics.total_return)
    _put(doc, "executionTime", metrics.execution_time)
    if metrics.last_updated is not None:
        doc["lastUpdated"] = dump_timestamp(metrics.last_updated)
    return doc


def load_performance(doc: Mapping[str, Any]) -> PerformanceMetrics:
    last_updated = doc.get("lastUpdated")
    return PerformanceMetrics(
        actual_apy=_optional_float(doc.get("actualApy")),
        total_return=_optional_float(doc.get("totalReturn")),
        execution_time=_optional_float(doc.get("executionTime")),
        last_updated=parse_timestamp(last_updated) if last_updated is not None else None,
    )


def dump_strategy(strategy: SavedStrategy) -> dict[str, Any]:
    doc = dump_plan_fields(strategy.plan)
    doc["id"] = strategy.id
    doc["name"] = strategy.name
    doc["createdAt"] = dump_timestamp(strategy.created_at)
    if strategy.updated_at is not None:
        doc["updatedAt"] = dump_timestamp(strategy.updated_at)
    doc["status"] = strategy.status.value
    doc["executionHistory"] = [dump_execution_record(r) for r in strategy.execution_history]
    if strategy.performance is not None:
        doc["performance"] = dump_performance(strategy.performance)
    doc["tags"] = list(strategy.tags)
    return doc


def load_strategy(doc: Mapping[str, Any]) -> SavedStrategy:
    """Rebuild a strategy; the stored ``status`` is ignored and re-derived from history."""
    doc = _mapping(doc, "strategy")
    try:
        history_raw = doc.get("executionHistory") or []
        if not isinstance(history_raw, Sequence) or isinstance(history_raw, str):
            raise ValueError("executionHistory must be a list")
        performance_raw = doc.get("performance")
        updated_at = doc.get("updatedAt")
        return SavedStrategy(
            id=str(doc["id"]),
            name=str(doc["name"]),
            plan=load_plan_fields(doc),
            created_at=parse_timestamp(doc["createdAt"]),
            updated_at=parse_timestamp(updated_at) if updated_at is not None else None,
            execution_history=tuple(load_execution_record(item) for item in history_raw),
            performance=(
                load_performance(performance_raw) if isinstance(performance_raw, Mapping) else None
            ),
            tags=_str_tuple(doc.get("tags")),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"malformed strategy document: {exc}") from exc


def dump_collection(strategies: Sequence[SavedStrategy]) -> str:
    return json.dumps([dump_strategy(s) for s in strategies], sort_keys=True, allow_nan=False)


def load_collection(raw: str | None) -> list[SavedStrategy]:
    if raw is None or not raw.strip():
        return []
    parsed = json.loads(raw)
    if not isinstance(parsed, list):
        raise ValueError("strategy collection must be a JSON list")
    return [load_strategy(item) for item in parsed]


def _ledger_number(value: float | None) -> float | None:
    if value is None:
        return None
    if not math.isfinite(value):
        raise ValueError(f"non-finite number cannot be stored on-chain: {value!r}")
    return value


def dump_plan_for_ledger(plan: StrategyPlan, *, creator: str, created_at_ms: int) -> str:
    """Serialize ``plan`` into the ``strategy_json`` argument of ``store_complete_strategy``."""
    if not plan.id:
        raise ValueError("strategy id is required for on-chain storage")
    payload = {
        "id": plan.id,
        "goal": plan.goal,
        "chains": list(plan.chains),
        "protocols": list(plan.protocols),
        "steps": [
            {
                "action": step.action,
                "protocol": step.protocol,
                "asset": step.asset,
                "expected_apy": _ledger_number(step.expected_apy),
                "amount": step.amount,
            }
            for step in plan.steps
        ],
        "risk_level": plan.risk_level or "medium",
        "estimated_apy": _ledger_number(plan.estimated_apy),
        "estimated_tvl": plan.estimated_tvl,
        "confidence": _ledger_number(plan.confidence),
        "reasoning": plan.reasoning,
        "warnings": list(plan.warnings) if plan.warnings is not None else None,
        "creator": creator,
        "created_at": created_at_ms,
    }
    return json.dumps(payload, separators=(",", ":"), allow_nan=False)
