from __future__ import annotations

from typing import Protocol

WALLET_SESSION_PREFIX = "wallet_session:"
PENDING_CONNECTION_PREFIX = "pending_connection:"
PENDING_EXECUTION_KEY = "pending_execution"


class SessionStoreProtocol(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...
