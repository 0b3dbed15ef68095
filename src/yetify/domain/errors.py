"""Error taxonomy for the strategy lifecycle.

Every error carries the lifecycle ``step`` it belongs to so callers can tell the
user whether to reconnect the wallet, retry the ledger write, or give up.
"""

from __future__ import annotations

from enum import StrEnum


class LifecycleStep(StrEnum):
    WALLET = "wallet"
    LEDGER = "ledger"
    STORAGE = "storage"


class LedgerErrorCategory(StrEnum):
    USER_REJECTED = "user_rejected"
    TRANSIENT = "transient"
    FATAL = "fatal"
    UNKNOWN = "unknown"


class LifecycleError(RuntimeError):
    step: LifecycleStep = LifecycleStep.STORAGE

    def __init__(self, message: str, *, step: LifecycleStep | None = None) -> None:
        super().__init__(message)
        if step is not None:
            self.step = step


class NotFoundError(LifecycleError):
    """An operation referenced an unknown strategy or record id."""

    def __init__(self, message: str, *, entity_id: str | None = None) -> None:
        super().__init__(message, step=LifecycleStep.STORAGE)
        self.entity_id = entity_id


class PreconditionError(LifecycleError):
    """A ledger write was attempted without a connected wallet."""

    step = LifecycleStep.WALLET

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class LedgerSubmissionError(LifecycleError):
    step = LifecycleStep.LEDGER
    category: LedgerErrorCategory = LedgerErrorCategory.UNKNOWN
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        details: str | None = None,
        step: LifecycleStep | None = None,
    ) -> None:
        super().__init__(message, step=step)
        self.details = details


class UserRejectedError(LedgerSubmissionError):
    category = LedgerErrorCategory.USER_REJECTED


class TransientError(LedgerSubmissionError):
    category = LedgerErrorCategory.TRANSIENT
    retryable = True


class FatalError(LedgerSubmissionError):
    category = LedgerErrorCategory.FATAL


class StorageError(LifecycleError):
    """Persistence backend failure (serialization, I/O, quota)."""

    def __init__(
        self, message: str, *, operation: str | None = None, target: str | None = None
    ) -> None:
        super().__init__(message, step=LifecycleStep.STORAGE)
        self.operation = operation
        self.target = target
