"""Local repository of saved strategies.

The whole collection is one document: every write loads it, applies the
change, and saves it back under a single re-entrant lock. Backend failures are
logged and surfaced as empty reads or ``None``/``False`` writes.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from yetify.domain.errors import NotFoundError, StorageError
from yetify.domain.models import (
    ExecutionRecord,
    SavedStrategy,
    StrategyPlan,
    StrategyStatus,
    ensure_utc,
    utc_now,
)
from yetify.domain.strategy_codec import dump_collection, load_collection
from yetify.persistence.interfaces.strategy_repo import StrategyRepoProtocol

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "created_at", "execution_history", "status"})
_PLAN_FIELDS = frozenset(
    {
        "goal",
        "chains",
        "protocols",
        "steps",
        "risk_level",
        "estimated_apy",
        "estimated_tvl",
        "confidence",
        "reasoning",
        "warnings",
    }
)
_RECORD_FIELDS = frozenset({"name", "updated_at", "performance", "tags"})


def _epoch_ms(now: datetime) -> int:
    return int(ensure_utc(now).timestamp() * 1000)


def generate_id(prefix: str = "strategy", *, now: datetime | None = None) -> str:
    return f"{prefix}_{_epoch_ms(now or utc_now())}_{secrets.token_hex(6)}"


def _as_tuple(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def _index_of(strategies: list[SavedStrategy], strategy_id: str) -> int:
    for index, strategy in enumerate(strategies):
        if strategy.id == strategy_id:
            return index
    raise NotFoundError(f"strategy not found: {strategy_id}", entity_id=strategy_id)


class _Unreadable(Exception):
    pass


class StrategyStore:
    def __init__(
        self,
        repo: StrategyRepoProtocol,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def generate_id(self) -> str:
        return generate_id("strategy", now=self._clock())

    def _load(self) -> list[SavedStrategy]:
        try:
            raw = self._repo.load_document()
        except StorageError as exc:
            logger.error(
                "strategy_store_load_failed",
                extra={"extra": {"operation": exc.operation, "error": str(exc)}},
            )
            raise _Unreadable from exc
        try:
            return load_collection(raw)
        except ValueError as exc:
            logger.error(
                "strategy_store_decode_failed",
                extra={"extra": {"error_type": type(exc).__name__, "error": str(exc)}},
            )
            raise _Unreadable from exc

    def _persist(self, strategies: list[SavedStrategy], *, operation: str) -> bool:
        try:
            body = dump_collection(strategies)
            self._repo.save_document(body)
        except (StorageError, ValueError, TypeError) as exc:
            logger.error(
                "strategy_store_save_failed",
                extra={
                    "extra": {
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    }
                },
            )
            return False
        return True

    def _stamp(self, previous: SavedStrategy) -> datetime:
        now = ensure_utc(self._clock())
        floor = previous.last_modified
        return now if now >= floor else floor

    def list_all(self) -> list[SavedStrategy]:
        try:
            return self._load()
        except _Unreadable:
            return []

    def get_by_id(self, strategy_id: str) -> SavedStrategy | None:
        for strategy in self.list_all():
            if strategy.id == strategy_id:
                return strategy
        return None

    def list_by_status(self, status: StrategyStatus | str) -> list[SavedStrategy]:
        wanted = StrategyStatus(status)
        return [s for s in self.list_all() if s.status is wanted]

    def search(self, query: str) -> list[SavedStrategy]:
        needle = query.strip().lower()
        if not needle:
            return self.list_all()
        return [
            s
            for s in self.list_all()
            if needle in s.name.lower()
            or needle in s.goal.lower()
            or any(needle in tag.lower() for tag in s.tags)
        ]

    def save(
        self, plan: StrategyPlan, name: str, tags: list[str] | tuple[str, ...] | None = None
    ) -> SavedStrategy | None:
        with self._lock:
            try:
                strategies = self._load()
            except _Unreadable:
                return None
            taken = {s.id for s in strategies}
            strategy_id = plan.id
            while not strategy_id or strategy_id in taken:
                strategy_id = self.generate_id()
            record = SavedStrategy(
                id=strategy_id,
                name=name,
                plan=replace(plan, id=strategy_id),
                created_at=ensure_utc(self._clock()),
                tags=tuple(tags or ()),
            )
            if not self._persist([*strategies, record], operation="save"):
                return None
        logger.info(
            "strategy_saved",
            extra={"extra": {"strategy_id": strategy_id, "strategy_name": name}},
        )
        return record

    def update(self, strategy_id: str, **fields: Any) -> SavedStrategy | None:
        forbidden = IMMUTABLE_FIELDS.intersection(fields)
        if forbidden:
            raise ValueError(f"immutable strategy fields: {', '.join(sorted(forbidden))}")
        unknown = set(fields) - _PLAN_FIELDS - _RECORD_FIELDS
        if unknown:
            raise ValueError(f"unknown strategy fields: {', '.join(sorted(unknown))}")
        fields.pop("updated_at", None)

        def apply(current: SavedStrategy) -> SavedStrategy:
            plan_changes = {k: _as_tuple(v) for k, v in fields.items() if k in _PLAN_FIELDS}
            record_changes = {k: _as_tuple(v) for k, v in fields.items() if k in _RECORD_FIELDS}
            return replace(
                current,
                plan=replace(current.plan, **plan_changes),
                updated_at=self._stamp(current),
                **record_changes,
            )

        return self._mutate(strategy_id, apply, operation="update")

    def append_execution_record(
        self,
        strategy_id: str,
        build: Callable[[SavedStrategy], ExecutionRecord],
    ) -> SavedStrategy | None:
        """Append the record ``build`` produces for the current strategy, atomically."""

        def apply(current: SavedStrategy) -> SavedStrategy:
            record = build(current)
            return replace(
                current,
                execution_history=(*current.execution_history, record),
                updated_at=self._stamp(current),
            )

        return self._mutate(strategy_id, apply, operation="append_execution_record")

    def replace_strategy(
        self,
        strategy_id: str,
        apply: Callable[[SavedStrategy], SavedStrategy],
    ) -> SavedStrategy | None:
        """Run ``apply`` on the stored strategy and persist the result; ``updated_at`` is stamped."""

        def stamped(current: SavedStrategy) -> SavedStrategy:
            changed = apply(current)
            if changed.id != current.id or changed.created_at != current.created_at:
                raise ValueError("strategy id and created_at are immutable")
            return replace(changed, updated_at=self._stamp(current))

        return self._mutate(strategy_id, stamped, operation="replace")

    def _mutate(
        self,
        strategy_id: str,
        apply: Callable[[SavedStrategy], SavedStrategy],
        *,
        operation: str,
    ) -> SavedStrategy | None:
        with self._lock:
            try:
                strategies = self._load()
            except _Unreadable:
                return None
            try:
                index = _index_of(strategies, strategy_id)
            except NotFoundError as exc:
                logger.warning(
                    "strategy_not_found",
                    extra={"extra": {"strategy_id": exc.entity_id, "operation": operation}},
                )
                return None
            updated = apply(strategies[index])
            strategies[index] = updated
            if not self._persist(strategies, operation=operation):
                return None
        return updated

    def delete(self, strategy_id: str) -> bool:
        with self._lock:
            try:
                strategies = self._load()
            except _Unreadable:
                return False
            remaining = [s for s in strategies if s.id != strategy_id]
            if len(remaining) == len(strategies):
                return False
            if not self._persist(remaining, operation="delete"):
                return False
        logger.info("strategy_deleted", extra={"extra": {"strategy_id": strategy_id}})
        return True