"""Per-task lifecycle identifiers injected into every JSON log line."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

LIFECYCLE_FIELDS = ("run_id", "strategy_id", "execution_id", "provider", "account_id")
_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"yetify_{name}", default=None) for name in LIFECYCLE_FIELDS
}


def get_logging_context() -> dict[str, str]:
    return {
        name: value
        for name, var in _CONTEXT_VARS.items()
        if (value := var.get()) is not None
    }


@contextmanager
def with_logging_context(**fields: str | None) -> Iterator[None]:
    """Bind lifecycle identifiers for the block; ``None`` values and unknown names are skipped."""
    bound = [
        (_CONTEXT_VARS[name], value)
        for name, value in fields.items()
        if name in _CONTEXT_VARS and value is not None
    ]
    tokens = [(var, var.set(value)) for var, value in bound]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@contextmanager
def with_strategy_context(
    strategy_id: str,
    *,
    provider: str | None = None,
    account_id: str | None = None,
) -> Iterator[None]:
    with with_logging_context(strategy_id=strategy_id, provider=provider, account_id=account_id):
        yield


@contextmanager
def with_execution_context(strategy_id: str, execution_id: str) -> Iterator[None]:
    with with_logging_context(strategy_id=strategy_id, execution_id=execution_id):
        yield
