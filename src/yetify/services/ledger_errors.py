from __future__ import annotations

import httpx

from yetify.domain.errors import (
    FatalError,
    LedgerErrorCategory,
    LedgerSubmissionError,
    LifecycleStep,
    TransientError,
    UserRejectedError,
)

USER_REJECTED_RPC_CODE = 4001


def classify_ledger_error(exc: BaseException) -> LedgerErrorCategory:
    if isinstance(exc, LedgerSubmissionError):
        return exc.category
    if isinstance(exc, httpx.TimeoutException | httpx.NetworkError | TimeoutError):
        return LedgerErrorCategory.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        status = int(exc.response.status_code)
        if status == 429 or status >= 500:
            return LedgerErrorCategory.TRANSIENT
        if 400 <= status < 500:
            return LedgerErrorCategory.FATAL
    if isinstance(exc, httpx.TransportError):
        return LedgerErrorCategory.TRANSIENT
    if getattr(exc, "code", None) == USER_REJECTED_RPC_CODE:
        return LedgerErrorCategory.USER_REJECTED
    if isinstance(exc, ValueError | TypeError):
        return LedgerErrorCategory.FATAL
    return LedgerErrorCategory.UNKNOWN


def as_ledger_error(
    exc: BaseException, *, step: LifecycleStep | None = None
) -> LedgerSubmissionError:
    """Wrap ``exc`` in the error type matching its category; unknown maps to fatal."""
    if isinstance(exc, LedgerSubmissionError):
        return exc
    category = classify_ledger_error(exc)
    message = str(exc) or type(exc).__name__
    details = type(exc).__name__
    if category is LedgerErrorCategory.USER_REJECTED:
        return UserRejectedError(message, details=details, step=step)
    if category is LedgerErrorCategory.TRANSIENT:
        return TransientError(message, details=details, step=step)
    return FatalError(message, details=details, step=step)
