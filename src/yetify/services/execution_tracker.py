from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from yetify.domain.models import (
    ExecutionRecord,
    ExecutionStatus,
    PerformanceMetrics,
    SavedStrategy,
    ensure_utc,
    utc_now,
)
from yetify.logging_context import with_execution_context
from yetify.services.strategy_store import StrategyStore, generate_id

logger = logging.getLogger(__name__)


class ExecutionTracker:
    """Appends execution records and performance snapshots to saved strategies."""

    def __init__(
        self,
        store: StrategyStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    def _new_record_id(self, existing: SavedStrategy) -> str:
        taken = {record.id for record in existing.execution_history}
        record_id = generate_id("exec", now=self._clock())
        while record_id in taken:
            record_id = generate_id("exec", now=self._clock())
        return record_id

    def add_execution_record(
        self,
        strategy_id: str,
        status: ExecutionStatus | str,
        transaction_hash: str | None = None,
        error_message: str | None = None,
        gas_used: str | None = None,
        actual_return: float | None = None,
    ) -> bool:
        execution_status = ExecutionStatus(status)

        def build(current: SavedStrategy) -> ExecutionRecord:
            return ExecutionRecord(
                id=self._new_record_id(current),
                timestamp=ensure_utc(self._clock()),
                status=execution_status,
                transaction_hash=transaction_hash,
                error_message=error_message,
                gas_used=gas_used,
                actual_return=actual_return,
            )

        updated = self._store.append_execution_record(strategy_id, build)
        if updated is None:
            return False
        with with_execution_context(strategy_id, updated.execution_history[-1].id):
            logger.info(
                "execution_recorded",
                extra={
                    "extra": {
                        "execution_status": execution_status.value,
                        "strategy_status": updated.status.value,
                        "transaction_hash": transaction_hash,
                    }
                },
            )
        return True

    def update_performance_metrics(self, strategy_id: str, metrics: PerformanceMetrics) -> bool:
        stamped = replace(metrics, last_updated=ensure_utc(self._clock()))

        def apply(current: SavedStrategy) -> SavedStrategy:
            base = current.performance or PerformanceMetrics()
            return replace(current, performance=base.merged(stamped))

        return self._store.replace_strategy(strategy_id, apply) is not None
