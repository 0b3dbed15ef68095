"""Wallet session values and the redirect-callback resolver.

A redirect-based connect cannot keep an in-process callback alive across the
navigation round trip, so the outgoing leg persists a :class:`PendingConnection`
and the landing leg feeds it, together with the landing query parameters, to
:func:`resolve_callback`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any
from urllib.parse import parse_qs, urlsplit

from yetify.domain.models import ensure_utc
from yetify.domain.strategy_codec import dump_timestamp, parse_timestamp


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectFlow(StrEnum):
    DIRECT = "direct"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class WalletSession:
    provider: str
    account_id: str
    connected_at: datetime
    connection_state: ConnectionState = ConnectionState.CONNECTED
    balance: str | None = None
    public_key: str | None = None

    def with_balance(self, balance: str | None) -> WalletSession:
        return replace(self, balance=balance)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "accountId": self.account_id,
            "connectedAt": dump_timestamp(self.connected_at),
            "connectionState": self.connection_state.value,
            "balance": self.balance,
            "publicKey": self.public_key,
        }

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> WalletSession:
        return cls(
            provider=str(doc["provider"]),
            account_id=str(doc["accountId"]),
            connected_at=parse_timestamp(doc["connectedAt"]),
            connection_state=ConnectionState(str(doc.get("connectionState", "connected"))),
            balance=doc.get("balance"),
            public_key=doc.get("publicKey"),
        )


@dataclass(frozen=True)
class PendingConnection:
    provider: str
    nonce: str
    created_at: datetime
    expires_at: datetime
    callback_url: str

    @classmethod
    def open(
        cls,
        *,
        provider: str,
        nonce: str,
        callback_url: str,
        now: datetime,
        ttl_seconds: int,
    ) -> PendingConnection:
        now = ensure_utc(now)
        return cls(
            provider=provider,
            nonce=nonce,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            callback_url=callback_url,
        )

    def is_expired(self, now: datetime) -> bool:
        return ensure_utc(now) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "nonce": self.nonce,
            "createdAt": dump_timestamp(self.created_at),
            "expiresAt": dump_timestamp(self.expires_at),
            "callbackUrl": self.callback_url,
        }

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> PendingConnection:
        return cls(
            provider=str(doc["provider"]),
            nonce=str(doc["nonce"]),
            created_at=parse_timestamp(doc["createdAt"]),
            expires_at=parse_timestamp(doc["expiresAt"]),
            callback_url=str(doc["callbackUrl"]),
        )


@dataclass(frozen=True)
class PendingExecution:
    strategy_id: str
    account_id: str
    provider: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategyId": self.strategy_id,
            "accountId": self.account_id,
            "provider": self.provider,
            "createdAt": dump_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> PendingExecution:
        return cls(
            strategy_id=str(doc["strategyId"]),
            account_id=str(doc["accountId"]),
            provider=str(doc["provider"]),
            created_at=parse_timestamp(doc["createdAt"]),
        )


@dataclass(frozen=True)
class CallbackExpired:
    pending: PendingConnection


@dataclass(frozen=True)
class NotAPendingCallback:
    reason: str


CallbackOutcome = WalletSession | CallbackExpired | NotAPendingCallback


def parse_landing_params(url_or_params: str | Mapping[str, Any]) -> dict[str, str]:
    """Flatten a landing URL (or an already-parsed query mapping) to first values."""
    if isinstance(url_or_params, Mapping):
        flattened: dict[str, str] = {}
        for key, value in url_or_params.items():
            if isinstance(value, (list, tuple)):
                if value:
                    flattened[str(key)] = str(value[0])
            elif value is not None:
                flattened[str(key)] = str(value)
        return flattened
    text = url_or_params.strip()
    if "://" in text or text.startswith("/") or "?" in text:
        query = urlsplit(text).query
    else:
        query = text
    return {key: values[0] for key, values in parse_qs(query).items() if values}


def transaction_hashes(params: Mapping[str, str]) -> tuple[str, ...]:
    raw = params.get("transactionHashes", "")
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def resolve_callback(
    pending: PendingConnection | None,
    landing_params: Mapping[str, str],
    now: datetime,
) -> CallbackOutcome:
    account_id = (landing_params.get("account_id") or "").strip()
    if not account_id:
        return NotAPendingCallback(reason="missing_account_id")
    if pending is None:
        return NotAPendingCallback(reason="no_pending_connection")
    if pending.is_expired(now):
        return CallbackExpired(pending=pending)
    public_key = (landing_params.get("public_key") or "").strip() or None
    return WalletSession(
        provider=pending.provider,
        account_id=account_id,
        connected_at=ensure_utc(now),
        public_key=public_key,
    )
