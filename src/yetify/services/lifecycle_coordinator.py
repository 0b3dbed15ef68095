"""Ties the local store, the wallet connector and the ledger together.

``execute`` never raises across its boundary: every result, including
refusals, comes back as an :class:`ExecutionOutcome` naming the failing step.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

import httpx

from yetify.domain.errors import (
    LedgerErrorCategory,
    LedgerSubmissionError,
    LifecycleStep,
    PreconditionError,
    StorageError,
)
from yetify.domain.models import ExecutionStatus, SavedStrategy, utc_now
from yetify.domain.plan_generation import PlanGenerator, default_plan
from yetify.domain.wallet import PendingExecution, parse_landing_params, transaction_hashes
from yetify.logging_context import with_strategy_context
from yetify.persistence.interfaces.session_repo import PENDING_EXECUTION_KEY, SessionStoreProtocol
from yetify.services.execution_tracker import ExecutionTracker
from yetify.services.inflight_registry import InFlightRegistry
from yetify.services.onchain_persister import OnChainPersister
from yetify.services.strategy_store import StrategyStore
from yetify.services.wallet_connector import WalletConnector

logger = logging.getLogger(__name__)

USER_REJECTED_LANDING_CODE = "userRejected"


class OutcomeKind(StrEnum):
    COMPLETED = "completed"
    WALLET_REQUIRED = "wallet_required"
    IN_FLIGHT = "in_flight"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


_KIND_BY_CATEGORY: dict[LedgerErrorCategory, OutcomeKind] = {
    LedgerErrorCategory.USER_REJECTED: OutcomeKind.REJECTED,
    LedgerErrorCategory.TRANSIENT: OutcomeKind.TRANSIENT_FAILURE,
    LedgerErrorCategory.FATAL: OutcomeKind.FATAL_FAILURE,
    LedgerErrorCategory.UNKNOWN: OutcomeKind.FATAL_FAILURE,
}

_MESSAGES: dict[OutcomeKind, str] = {
    OutcomeKind.COMPLETED: "Strategy stored on-chain",
    OutcomeKind.WALLET_REQUIRED: "Connect a wallet to store this strategy on-chain",
    OutcomeKind.IN_FLIGHT: "A submission for this strategy is already in progress",
    OutcomeKind.NOT_FOUND: "Strategy not found",
    OutcomeKind.REJECTED: "The transaction was rejected in the wallet",
    OutcomeKind.TRANSIENT_FAILURE: "The ledger is temporarily unreachable; try again",
    OutcomeKind.FATAL_FAILURE: "The strategy could not be stored on-chain",
}


@dataclass(frozen=True)
class ExecutionOutcome:
    kind: OutcomeKind
    strategy_id: str
    message: str
    step: LifecycleStep | None = None
    transaction_hash: str | None = None
    explorer_url: str | None = None
    error: str | None = None
    strategy: SavedStrategy | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "strategyId": self.strategy_id,
            "message": self.message,
            "step": self.step.value if self.step is not None else None,
            "transactionHash": self.transaction_hash,
            "explorerUrl": self.explorer_url,
            "error": self.error,
            "status": self.strategy.status.value if self.strategy is not None else None,
        }


class LifecycleCoordinator:
    def __init__(
        self,
        *,
        store: StrategyStore,
        tracker: ExecutionTracker,
        connector: WalletConnector,
        persister: OnChainPersister,
        sessions: SessionStoreProtocol,
        registry: InFlightRegistry | None = None,
        record_failed_executions: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._tracker = tracker
        self._connector = connector
        self._persister = persister
        self._sessions = sessions
        self._registry = registry or InFlightRegistry()
        self._record_failed_executions = record_failed_executions
        self._clock = clock

    @property
    def registry(self) -> InFlightRegistry:
        return self._registry

    def _outcome(self, kind: OutcomeKind, strategy_id: str, **kwargs: Any) -> ExecutionOutcome:
        kwargs.setdefault("message", _MESSAGES[kind])
        return ExecutionOutcome(kind=kind, strategy_id=strategy_id, **kwargs)

    async def draft_and_save(
        self,
        prompt: str,
        name: str,
        *,
        generator: PlanGenerator | None = None,
        risk_hint: str | None = None,
        tags: list[str] | None = None,
    ) -> SavedStrategy | None:
        """Generate a plan for ``prompt`` and save it; the fallback plan covers generator failures."""
        plan = None
        if generator is not None:
            try:
                plan = await generator.generate(prompt, risk_hint)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    "plan_generation_failed",
                    extra={"extra": {"error_type": type(exc).__name__, "error": str(exc)}},
                )
        if plan is None:
            plan = default_plan(prompt, risk_hint)
        return self._store.save(plan, name, tags)

    # pending execution marker

    def _save_pending_execution(self, pending: PendingExecution) -> None:
        try:
            self._sessions.set(PENDING_EXECUTION_KEY, json.dumps(pending.to_dict()))
        except StorageError as exc:
            logger.warning(
                "pending_execution_not_saved",
                extra={"extra": {"strategy_id": pending.strategy_id, "error": str(exc)}},
            )

    def _load_pending_execution(self) -> PendingExecution | None:
        try:
            raw = self._sessions.get(PENDING_EXECUTION_KEY)
        except StorageError as exc:
            logger.error("pending_execution_unreadable", extra={"extra": {"error": str(exc)}})
            return None
        if raw is None:
            return None
        try:
            return PendingExecution.from_dict(json.loads(raw))
        except (KeyError, ValueError, TypeError):
            self._clear_pending_execution()
            return None

    def _clear_pending_execution(self) -> None:
        try:
            self._sessions.delete(PENDING_EXECUTION_KEY)
        except StorageError as exc:
            logger.warning("pending_execution_not_cleared", extra={"extra": {"error": str(exc)}})

    # execution

    async def execute(
        self, strategy_or_id: SavedStrategy | str, provider: str | None = None
    ) -> ExecutionOutcome:
        strategy_id = (
            strategy_or_id.id if isinstance(strategy_or_id, SavedStrategy) else strategy_or_id
        )
        with self._registry.hold(strategy_id) as acquired:
            if not acquired:
                logger.info("execution_in_flight", extra={"extra": {"strategy_id": strategy_id}})
                return self._outcome(OutcomeKind.IN_FLIGHT, strategy_id)
            with with_strategy_context(strategy_id, provider=provider):
                return await self._execute_exclusive(strategy_id, provider)

    async def _execute_exclusive(self, strategy_id: str, provider: str | None) -> ExecutionOutcome:
        strategy = self._store.get_by_id(strategy_id)
        if strategy is None:
            return self._outcome(OutcomeKind.NOT_FOUND, strategy_id, step=LifecycleStep.STORAGE)

        connected = await self._connector.is_wallet_connected(provider)
        session = (
            self._connector.session(provider)
            if provider is not None
            else self._connector.active_session()
        )
        if not connected or session is None:
            return self._outcome(
                OutcomeKind.WALLET_REQUIRED,
                strategy_id,
                step=LifecycleStep.WALLET,
                strategy=strategy,
            )

        self._save_pending_execution(
            PendingExecution(
                strategy_id=strategy_id,
                account_id=session.account_id,
                provider=session.provider,
                created_at=self._clock(),
            )
        )
        try:
            with with_strategy_context(
                strategy_id, provider=session.provider, account_id=session.account_id
            ):
                receipt = await self._persister.store_complete_strategy(
                    strategy.plan, provider=session.provider
                )
        except PreconditionError as exc:
            return self._outcome(
                OutcomeKind.WALLET_REQUIRED,
                strategy_id,
                step=LifecycleStep.WALLET,
                error=str(exc),
                strategy=strategy,
            )
        except LedgerSubmissionError as exc:
            return self._record_failure(strategy_id, exc)
        finally:
            self._clear_pending_execution()

        return self._record_success(strategy_id, receipt.transaction_hash, receipt.explorer_url)

    def _record_success(
        self, strategy_id: str, transaction_hash: str, explorer_url: str
    ) -> ExecutionOutcome:
        recorded = self._tracker.add_execution_record(
            strategy_id, ExecutionStatus.COMPLETED, transaction_hash=transaction_hash
        )
        updated = self._store.get_by_id(strategy_id)
        if not recorded:
            logger.error(
                "execution_record_lost",
                extra={"extra": {"strategy_id": strategy_id, "transaction_hash": transaction_hash}},
            )
            return self._outcome(
                OutcomeKind.FATAL_FAILURE,
                strategy_id,
                message="Stored on-chain, but the local record could not be updated",
                step=LifecycleStep.STORAGE,
                transaction_hash=transaction_hash,
                explorer_url=explorer_url,
                strategy=updated,
            )
        return self._outcome(
            OutcomeKind.COMPLETED,
            strategy_id,
            transaction_hash=transaction_hash,
            explorer_url=explorer_url,
            strategy=updated,
        )

    def _record_failure(self, strategy_id: str, exc: LedgerSubmissionError) -> ExecutionOutcome:
        kind = _KIND_BY_CATEGORY[exc.category]
        logger.warning(
            "execution_failed",
            exc_info=exc,
            extra={"extra": {"strategy_id": strategy_id, "outcome": kind.value}},
        )
        if self._record_failed_executions:
            self._tracker.add_execution_record(
                strategy_id, ExecutionStatus.FAILED, error_message=str(exc)
            )
        return self._outcome(
            kind,
            strategy_id,
            step=exc.step,
            error=str(exc),
            strategy=self._store.get_by_id(strategy_id),
        )

    async def resume_from_landing(
        self, url_or_params: str | Mapping[str, Any]
    ) -> ExecutionOutcome | None:
        """Settle a submission interrupted by a navigation round trip.

        Returns ``None`` when there is no pending submission or the landing
        carries neither ``transactionHashes`` nor ``errorCode``.
        """
        pending = self._load_pending_execution()
        if pending is None:
            return None
        params = parse_landing_params(url_or_params)
        hashes = transaction_hashes(params)
        error_code = params.get("errorCode")
        if not hashes and not error_code:
            return None

        strategy_id = pending.strategy_id
        with self._registry.hold(strategy_id) as acquired:
            if not acquired:
                return self._outcome(OutcomeKind.IN_FLIGHT, strategy_id)
            self._clear_pending_execution()
            if self._store.get_by_id(strategy_id) is None:
                return self._outcome(OutcomeKind.NOT_FOUND, strategy_id, step=LifecycleStep.STORAGE)
            with with_strategy_context(
                strategy_id, provider=pending.provider, account_id=pending.account_id
            ):
                if hashes:
                    return self._record_success(
                        strategy_id, hashes[0], self._persister.explorer_url(hashes[0])
                    )
                kind = (
                    OutcomeKind.REJECTED
                    if error_code == USER_REJECTED_LANDING_CODE
                    else OutcomeKind.FATAL_FAILURE
                )
                error_message = params.get("errorMessage") or str(error_code)
                logger.warning(
                    "landing_execution_failed",
                    extra={"extra": {"strategy_id": strategy_id, "error_code": error_code}},
                )
                if self._record_failed_executions:
                    self._tracker.add_execution_record(
                        strategy_id, ExecutionStatus.FAILED, error_message=error_message
                    )
                return self._outcome(
                    kind,
                    strategy_id,
                    step=LifecycleStep.LEDGER,
                    error=error_message,
                    strategy=self._store.get_by_id(strategy_id),
                )
