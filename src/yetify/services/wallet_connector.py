"""Wallet connection state machine.

One connector instance owns every provider's session. Direct providers resolve
in-process; redirect providers persist a :class:`PendingConnection` before the
user navigates away and are completed by :meth:`WalletConnector.handle_landing`
on the next load.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from yetify.adapters.jsonrpc import RpcError
from yetify.adapters.wallet_provider import WalletProvider
from yetify.domain.errors import (
    LedgerSubmissionError,
    LifecycleStep,
    PreconditionError,
    StorageError,
    TransientError,
)
from yetify.domain.models import utc_now
from yetify.domain.wallet import (
    CallbackExpired,
    CallbackOutcome,
    ConnectFlow,
    ConnectionState,
    NotAPendingCallback,
    PendingConnection,
    WalletSession,
    parse_landing_params,
    resolve_callback,
    transaction_hashes,
)
from yetify.logging_context import with_logging_context
from yetify.persistence.interfaces.session_repo import (
    PENDING_CONNECTION_PREFIX,
    WALLET_SESSION_PREFIX,
    SessionStoreProtocol,
)
from yetify.services.ledger_errors import as_ledger_error

logger = logging.getLogger(__name__)

_PROVIDER_ERRORS = (httpx.HTTPError, RpcError, ValueError)
_BALANCE_ERRORS = (*_PROVIDER_ERRORS, ArithmeticError)


@dataclass(frozen=True)
class RedirectRequired:
    provider: str
    url: str
    pending: PendingConnection


@dataclass(frozen=True)
class LandingResult:
    outcome: CallbackOutcome
    transaction_hashes: tuple[str, ...] = ()
    error_code: str | None = None
    error_message: str | None = None

    @property
    def session(self) -> WalletSession | None:
        return self.outcome if isinstance(self.outcome, WalletSession) else None


class WalletConnector:
    def __init__(
        self,
        providers: Mapping[str, WalletProvider],
        sessions: SessionStoreProtocol,
        *,
        callback_url: str,
        pending_ttl_seconds: int = 600,
        connect_timeout_seconds: float = 60.0,
        clock: Callable[[], datetime] = utc_now,
        nonce_factory: Callable[[], str] = lambda: secrets.token_urlsafe(16),
    ) -> None:
        for name, wallet in providers.items():
            if not isinstance(getattr(wallet, "flow", None), ConnectFlow):
                raise ValueError(f"wallet provider {name!r} declares no connect flow")
            if not wallet.implements_flow():
                raise ValueError(
                    f"wallet provider {name!r} does not implement its {wallet.flow.value} flow"
                )
        self._providers = dict(providers)
        self._store = sessions
        self._callback_url = callback_url
        self._pending_ttl_seconds = pending_ttl_seconds
        self._connect_timeout_seconds = connect_timeout_seconds
        self._clock = clock
        self._nonce_factory = nonce_factory
        self._states: dict[str, ConnectionState] = {
            name: ConnectionState.DISCONNECTED for name in self._providers
        }
        self._sessions: dict[str, WalletSession] = {}
        self._direct_attempts: dict[str, asyncio.Task[WalletSession]] = {}

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    def _provider(self, name: str) -> WalletProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise PreconditionError(f"unknown wallet provider: {name}", provider=name)
        return provider

    def state(self, provider: str) -> ConnectionState:
        self._provider(provider)
        return self._states[provider]

    def session(self, provider: str) -> WalletSession | None:
        if self._states.get(provider) is not ConnectionState.CONNECTED:
            return None
        return self._sessions.get(provider)

    def active_session(self) -> WalletSession | None:
        for name in self._providers:
            current = self.session(name)
            if current is not None:
                return current
        return None

    # persisted state

    def _read_json(self, key: str) -> dict[str, Any] | None:
        try:
            raw = self._store.get(key)
        except StorageError as exc:
            logger.error(
                "wallet_state_read_failed", extra={"extra": {"key": key, "error": str(exc)}}
            )
            return None
        if raw is None:
            return None
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            logger.warning("wallet_state_discarded", extra={"extra": {"key": key}})
            self._forget(key)
            return None
        return parsed

    def _forget(self, key: str) -> None:
        try:
            self._store.delete(key)
        except StorageError as exc:
            logger.error(
                "wallet_state_delete_failed", extra={"extra": {"key": key, "error": str(exc)}}
            )

    def _load_pending(self, provider: str) -> PendingConnection | None:
        key = PENDING_CONNECTION_PREFIX + provider
        doc = self._read_json(key)
        if doc is None:
            return None
        try:
            return PendingConnection.from_dict(doc)
        except (KeyError, ValueError):
            self._forget(key)
            return None

    def _load_session(self, provider: str) -> WalletSession | None:
        key = WALLET_SESSION_PREFIX + provider
        doc = self._read_json(key)
        if doc is None:
            return None
        try:
            return WalletSession.from_dict(doc)
        except (KeyError, ValueError):
            self._forget(key)
            return None

    def _remember(self, session: WalletSession) -> None:
        self._store.set(WALLET_SESSION_PREFIX + session.provider, json.dumps(session.to_dict()))
        self._sessions[session.provider] = session
        self._states[session.provider] = ConnectionState.CONNECTED

    def _reset(self, provider: str) -> None:
        self._sessions.pop(provider, None)
        self._forget(WALLET_SESSION_PREFIX + provider)
        self._states[provider] = ConnectionState.DISCONNECTED

    async def _with_balance(self, provider: WalletProvider, session: WalletSession) -> WalletSession:
        try:
            balance = await provider.get_balance(session.account_id)
        except _BALANCE_ERRORS as exc:
            logger.warning(
                "wallet_balance_unavailable",
                extra={
                    "extra": {
                        "provider": provider.name,
                        "account_id": session.account_id,
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return session
        return session.with_balance(balance)

    # connect

    async def connect(self, provider: str) -> WalletSession | RedirectRequired:
        wallet = self._provider(provider)
        existing = self.session(provider)
        if existing is not None:
            return existing
        if wallet.flow is ConnectFlow.REDIRECT:
            return self._begin_redirect(wallet)
        attempt = self._direct_attempts.get(provider)
        if attempt is None:
            self._states[provider] = ConnectionState.CONNECTING
            attempt = asyncio.ensure_future(self._connect_direct(wallet))
            self._direct_attempts[provider] = attempt
            attempt.add_done_callback(lambda _: self._direct_attempts.pop(provider, None))
        return await asyncio.shield(attempt)

    def _begin_redirect(self, wallet: WalletProvider) -> RedirectRequired:
        now = self._clock()
        pending = self._load_pending(wallet.name)
        if pending is None or pending.is_expired(now):
            pending = PendingConnection.open(
                provider=wallet.name,
                nonce=self._nonce_factory(),
                callback_url=self._callback_url,
                now=now,
                ttl_seconds=self._pending_ttl_seconds,
            )
            self._store.set(PENDING_CONNECTION_PREFIX + wallet.name, json.dumps(pending.to_dict()))
            logger.info(
                "wallet_redirect_started",
                extra={"extra": {"provider": wallet.name, "expires_at": pending.expires_at.isoformat()}},
            )
        self._states[wallet.name] = ConnectionState.CONNECTING
        return RedirectRequired(
            provider=wallet.name, url=wallet.authorization_url(pending), pending=pending
        )

    async def _connect_direct(self, wallet: WalletProvider) -> WalletSession:
        with with_logging_context(provider=wallet.name):
            try:
                session = await asyncio.wait_for(
                    wallet.request_session(), timeout=self._connect_timeout_seconds
                )
            except TimeoutError as exc:
                self._states[wallet.name] = ConnectionState.DISCONNECTED
                logger.warning("wallet_connect_timeout", extra={"extra": {"provider": wallet.name}})
                raise TransientError(
                    "wallet did not respond in time", step=LifecycleStep.WALLET
                ) from exc
            except LedgerSubmissionError as exc:
                self._states[wallet.name] = ConnectionState.DISCONNECTED
                logger.info(
                    "wallet_connect_failed",
                    extra={"extra": {"provider": wallet.name, "category": exc.category.value}},
                )
                raise
            except _PROVIDER_ERRORS as exc:
                self._states[wallet.name] = ConnectionState.DISCONNECTED
                raise as_ledger_error(exc, step=LifecycleStep.WALLET) from exc
            except BaseException:
                self._states[wallet.name] = ConnectionState.DISCONNECTED
                raise
            session = await self._with_balance(wallet, session)
            try:
                self._remember(session)
            except StorageError:
                self._states[wallet.name] = ConnectionState.DISCONNECTED
                raise
            logger.info(
                "wallet_connected",
                extra={"extra": {"provider": wallet.name, "account_id": session.account_id}},
            )
            return session

    # redirect landing

    def _latest_pending(self) -> PendingConnection | None:
        candidates = [
            pending
            for name, wallet in self._providers.items()
            if wallet.flow is ConnectFlow.REDIRECT
            and (pending := self._load_pending(name)) is not None
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda pending: pending.created_at)

    def _clear_pending(self, provider: str) -> None:
        self._forget(PENDING_CONNECTION_PREFIX + provider)
        if self._states.get(provider) is ConnectionState.CONNECTING:
            self._states[provider] = ConnectionState.DISCONNECTED

    async def handle_landing(self, url_or_params: str | Mapping[str, Any]) -> LandingResult:
        params = parse_landing_params(url_or_params)
        hashes = transaction_hashes(params)
        error_code = params.get("errorCode")
        if error_code:
            error_message = params.get("errorMessage")
            for name, wallet in self._providers.items():
                if wallet.flow is ConnectFlow.REDIRECT and self._load_pending(name) is not None:
                    self._clear_pending(name)
            logger.warning(
                "wallet_redirect_error",
                extra={"extra": {"error_code": error_code, "error_message": error_message}},
            )
            return LandingResult(
                outcome=NotAPendingCallback(reason="provider_error"),
                transaction_hashes=hashes,
                error_code=error_code,
                error_message=error_message,
            )

        pending = self._latest_pending()
        outcome = resolve_callback(pending, params, self._clock())
        if isinstance(outcome, WalletSession):
            wallet = self._provider(outcome.provider)
            session = await self._with_balance(wallet, outcome)
            self._remember(session)
            self._clear_pending(outcome.provider)
            logger.info(
                "wallet_connected",
                extra={"extra": {"provider": outcome.provider, "account_id": session.account_id}},
            )
            outcome = session
        elif isinstance(outcome, CallbackExpired):
            self._clear_pending(outcome.pending.provider)
            logger.warning(
                "wallet_redirect_expired", extra={"extra": {"provider": outcome.pending.provider}}
            )
        return LandingResult(outcome=outcome, transaction_hashes=hashes)

    # session lifecycle

    async def restore(self) -> dict[str, ConnectionState]:
        """Reload persisted sessions, keeping only those the provider still accepts."""
        now = self._clock()
        for name, wallet in self._providers.items():
            stored = self._load_session(name)
            if stored is None:
                pending = self._load_pending(name)
                if pending is not None and pending.is_expired(now):
                    self._clear_pending(name)
                elif pending is not None:
                    self._states[name] = ConnectionState.CONNECTING
                continue
            try:
                valid = await wallet.validate_session(stored)
            except _PROVIDER_ERRORS as exc:
                logger.warning(
                    "wallet_restore_failed",
                    extra={"extra": {"provider": name, "error_type": type(exc).__name__}},
                )
                valid = False
            if not valid:
                self._reset(name)
                continue
            self._sessions[name] = await self._with_balance(wallet, stored)
            self._states[name] = ConnectionState.CONNECTED
        return dict(self._states)

    async def is_wallet_connected(self, provider: str | None = None) -> bool:
        if provider is None:
            current = self.active_session()
        else:
            current = self.session(provider)
        if current is None:
            return False
        wallet = self._provider(current.provider)
        try:
            valid = await wallet.validate_session(current)
        except _PROVIDER_ERRORS as exc:
            logger.warning(
                "wallet_check_failed",
                extra={
                    "extra": {
                        "provider": current.provider,
                        "account_id": current.account_id,
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return True
        if not valid:
            logger.info(
                "wallet_session_revoked",
                extra={"extra": {"provider": current.provider, "account_id": current.account_id}},
            )
            self._reset(current.provider)
            return False
        return True

    async def disconnect(self, provider: str) -> None:
        wallet = self._provider(provider)
        current = self._sessions.get(provider)
        if current is not None:
            try:
                await wallet.sign_out(current)
            except _PROVIDER_ERRORS as exc:
                logger.warning(
                    "wallet_sign_out_failed",
                    extra={"extra": {"provider": provider, "error_type": type(exc).__name__}},
                )
        self._reset(provider)
        self._forget(PENDING_CONNECTION_PREFIX + provider)
        logger.info("wallet_disconnected", extra={"extra": {"provider": provider}})

    async def close(self) -> None:
        for wallet in self._providers.values():
            await wallet.close()
