from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from yetify.adapters.ledger_relay import RelaySubmission
from yetify.domain.errors import (
    FatalError,
    LedgerSubmissionError,
    PreconditionError,
    TransientError,
)
from yetify.domain.models import StrategyPlan, ensure_utc, utc_now
from yetify.domain.strategy_codec import dump_plan_for_ledger
from yetify.domain.wallet import ConnectionState
from yetify.services.ledger_errors import as_ledger_error
from yetify.services.wallet_connector import WalletConnector

logger = logging.getLogger(__name__)


class LedgerClient(Protocol):
    async def submit(self, *, strategy_json: str, signer_id: str) -> RelaySubmission: ...


@dataclass(frozen=True)
class LedgerReceipt:
    transaction_hash: str
    explorer_url: str


class OnChainPersister:
    """Writes a plan snapshot to the ledger on behalf of the connected wallet."""

    def __init__(
        self,
        connector: WalletConnector,
        ledger: LedgerClient,
        *,
        explorer_tx_url: str,
        submit_timeout_seconds: float = 90.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._connector = connector
        self._ledger = ledger
        self._explorer_tx_url = explorer_tx_url
        self._submit_timeout_seconds = submit_timeout_seconds
        self._clock = clock

    def explorer_url(self, transaction_hash: str) -> str:
        return f"{self._explorer_tx_url}{transaction_hash}"

    async def store_complete_strategy(
        self, plan: StrategyPlan, provider: str | None = None
    ) -> LedgerReceipt:
        session = (
            self._connector.session(provider)
            if provider is not None
            else self._connector.active_session()
        )
        if session is None or self._connector.state(session.provider) is not ConnectionState.CONNECTED:
            raise PreconditionError("connect a wallet before storing on-chain", provider=provider)

        created_at_ms = int(ensure_utc(self._clock()).timestamp() * 1000)
        try:
            strategy_json = dump_plan_for_ledger(
                plan, creator=session.account_id, created_at_ms=created_at_ms
            )
        except (ValueError, TypeError) as exc:
            raise FatalError(f"strategy could not be serialized: {exc}") from exc

        try:
            submission = await asyncio.wait_for(
                self._ledger.submit(strategy_json=strategy_json, signer_id=session.account_id),
                timeout=self._submit_timeout_seconds,
            )
        except TimeoutError as exc:
            logger.warning(
                "ledger_submit_timeout",
                extra={"extra": {"strategy_id": plan.id, "timeout_s": self._submit_timeout_seconds}},
            )
            raise TransientError("ledger submission timed out") from exc
        except LedgerSubmissionError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise as_ledger_error(exc) from exc

        receipt = LedgerReceipt(
            transaction_hash=submission.transaction_hash,
            explorer_url=submission.explorer_url or self.explorer_url(submission.transaction_hash),
        )
        logger.info(
            "strategy_stored_onchain",
            extra={
                "extra": {
                    "strategy_id": plan.id,
                    "account_id": session.account_id,
                    "transaction_hash": receipt.transaction_hash,
                }
            },
        )
        return receipt
