from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum


class StrategyStatus(StrEnum):
    SAVED = "saved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionStatus(StrEnum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


# in_progress has no entry: it leaves the strategy status unchanged.
_STATUS_BY_EXECUTION: dict[ExecutionStatus, StrategyStatus] = {
    ExecutionStatus.STARTED: StrategyStatus.EXECUTING,
    ExecutionStatus.COMPLETED: StrategyStatus.COMPLETED,
    ExecutionStatus.FAILED: StrategyStatus.FAILED,
}


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


@dataclass(frozen=True)
class StrategyStep:
    action: str
    protocol: str
    asset: str
    amount: str | None = None
    expected_apy: float | None = None


@dataclass(frozen=True)
class StrategyPlan:
    goal: str
    chains: tuple[str, ...] = ()
    protocols: tuple[str, ...] = ()
    steps: tuple[StrategyStep, ...] = ()
    risk_level: str = "medium"
    id: str | None = None
    estimated_apy: float | None = None
    estimated_tvl: str | None = None
    confidence: float | None = None
    reasoning: str | None = None
    warnings: tuple[str, ...] | None = None


@dataclass(frozen=True)
class ExecutionRecord:
    id: str
    timestamp: datetime
    status: ExecutionStatus
    transaction_hash: str | None = None
    error_message: str | None = None
    gas_used: str | None = None
    actual_return: float | None = None


@dataclass(frozen=True)
class PerformanceMetrics:
    actual_apy: float | None = None
    total_return: float | None = None
    execution_time: float | None = None
    last_updated: datetime | None = None

    def merged(self, update: PerformanceMetrics) -> PerformanceMetrics:
        """Overlay the non-empty fields of ``update`` onto this snapshot."""
        return PerformanceMetrics(
            actual_apy=update.actual_apy if update.actual_apy is not None else self.actual_apy,
            total_return=(
                update.total_return if update.total_return is not None else self.total_return
            ),
            execution_time=(
                update.execution_time
                if update.execution_time is not None
                else self.execution_time
            ),
            last_updated=(
                update.last_updated if update.last_updated is not None else self.last_updated
            ),
        )


def derive_status(history: Iterable[ExecutionRecord]) -> StrategyStatus:
    """Most recent started/completed/failed record wins; no such record means saved."""
    for record in reversed(tuple(history)):
        mapped = _STATUS_BY_EXECUTION.get(record.status)
        if mapped is not None:
            return mapped
    return StrategyStatus.SAVED


@dataclass(frozen=True)
class SavedStrategy:
    id: str
    name: str
    plan: StrategyPlan
    created_at: datetime
    updated_at: datetime | None = None
    execution_history: tuple[ExecutionRecord, ...] = ()
    performance: PerformanceMetrics | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.plan.id != self.id:
            object.__setattr__(self, "plan", replace(self.plan, id=self.id))

    @property
    def status(self) -> StrategyStatus:
        return derive_status(self.execution_history)

    @property
    def goal(self) -> str:
        return self.plan.goal

    @property
    def latest_execution(self) -> ExecutionRecord | None:
        return self.execution_history[-1] if self.execution_history else None

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at
