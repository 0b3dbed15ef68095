from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass


@dataclass(frozen=True)
class InFlightRecord:
    strategy_id: str
    started_monotonic: float


class InFlightRegistry:
    """Mutual-exclusion set of strategy ids with a ledger submission in progress."""

    def __init__(self) -> None:
        self._records: dict[str, InFlightRecord] = {}

    def try_acquire(self, strategy_id: str) -> bool:
        if strategy_id in self._records:
            return False
        self._records[strategy_id] = InFlightRecord(strategy_id, time.monotonic())
        return True

    def release(self, strategy_id: str) -> None:
        self._records.pop(strategy_id, None)

    def is_in_flight(self, strategy_id: str) -> bool:
        return strategy_id in self._records

    def count(self) -> int:
        return len(self._records)

    def snapshot(self) -> list[InFlightRecord]:
        return sorted(self._records.values(), key=lambda record: record.strategy_id)

    @contextmanager
    def hold(self, strategy_id: str) -> Iterator[bool]:
        """Yield whether the slot was acquired; an acquired slot is released on exit."""
        acquired = self.try_acquire(strategy_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(strategy_id)
