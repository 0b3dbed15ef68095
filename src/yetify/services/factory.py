from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from yetify.adapters.evm_wallet import EvmWalletProvider
from yetify.adapters.jsonrpc import JsonRpcClient
from yetify.adapters.ledger_relay import LedgerRelayClient
from yetify.adapters.near_wallet import NearWalletProvider
from yetify.adapters.wallet_provider import WalletProvider
from yetify.config import Settings
from yetify.persistence.interfaces.session_repo import SessionStoreProtocol
from yetify.persistence.interfaces.strategy_repo import StrategyRepoProtocol
from yetify.persistence.json_file import JsonFileSessionStore, JsonFileStrategyRepo
from yetify.persistence.memory import InMemorySessionStore, InMemoryStrategyRepo
from yetify.persistence.sqlite.session_repo import SqliteSessionStore
from yetify.persistence.sqlite.strategy_repo import SqliteStrategyRepo
from yetify.services.execution_tracker import ExecutionTracker
from yetify.services.inflight_registry import InFlightRegistry
from yetify.services.lifecycle_coordinator import LifecycleCoordinator
from yetify.services.onchain_persister import OnChainPersister
from yetify.services.strategy_store import StrategyStore
from yetify.services.wallet_connector import WalletConnector

logger = logging.getLogger(__name__)


def build_strategy_repo(settings: Settings) -> StrategyRepoProtocol:
    if settings.strategy_store_backend == "json":
        return JsonFileStrategyRepo(settings.strategy_json_path)
    if settings.strategy_store_backend == "memory":
        return InMemoryStrategyRepo()
    return SqliteStrategyRepo(settings.strategy_db_path)


def build_session_store(settings: Settings) -> SessionStoreProtocol:
    if settings.strategy_store_backend == "json":
        json_path = Path(settings.strategy_json_path)
        return JsonFileSessionStore(json_path.with_name(f"{json_path.stem}.session.json"))
    if settings.strategy_store_backend == "memory":
        return InMemorySessionStore()
    return SqliteSessionStore(settings.strategy_db_path)


def build_strategy_store(settings: Settings) -> StrategyStore:
    return StrategyStore(build_strategy_repo(settings))


def build_wallet_providers(
    settings: Settings, *, http_client: httpx.AsyncClient | None = None
) -> dict[str, WalletProvider]:
    providers: dict[str, WalletProvider] = {
        NearWalletProvider.name: NearWalletProvider(
            JsonRpcClient(settings.resolved_near_rpc_url(), client=http_client),
            wallet_url=settings.resolved_near_wallet_url(),
            contract_id=settings.near_contract_id,
        )
    }
    if settings.evm_rpc_url:
        providers[EvmWalletProvider.name] = EvmWalletProvider(
            JsonRpcClient(settings.evm_rpc_url, client=http_client)
        )
    else:
        logger.debug("evm_provider_disabled", extra={"extra": {"reason": "EVM_RPC_URL unset"}})
    return providers


@dataclass
class Services:
    settings: Settings
    store: StrategyStore
    tracker: ExecutionTracker
    sessions: SessionStoreProtocol
    connector: WalletConnector
    ledger: LedgerRelayClient
    persister: OnChainPersister
    coordinator: LifecycleCoordinator

    async def aclose(self) -> None:
        await self.connector.close()
        await self.ledger.close()


def build_services(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    store: StrategyStore | None = None,
    sessions: SessionStoreProtocol | None = None,
) -> Services:
    """Composition root: one connector, one persister and one coordinator per process."""
    store = store or build_strategy_store(settings)
    sessions = sessions or build_session_store(settings)
    tracker = ExecutionTracker(store)
    connector = WalletConnector(
        build_wallet_providers(settings, http_client=http_client),
        sessions,
        callback_url=settings.app_callback_url,
        pending_ttl_seconds=settings.pending_connection_ttl_seconds,
        connect_timeout_seconds=settings.connect_timeout_seconds,
    )
    ledger = LedgerRelayClient(
        settings.ledger_relay_url,
        contract_id=settings.near_contract_id,
        client=http_client,
    )
    persister = OnChainPersister(
        connector,
        ledger,
        explorer_tx_url=settings.resolved_explorer_tx_url(),
        submit_timeout_seconds=settings.ledger_submit_timeout_seconds,
    )
    coordinator = LifecycleCoordinator(
        store=store,
        tracker=tracker,
        connector=connector,
        persister=persister,
        sessions=sessions,
        registry=InFlightRegistry(),
        record_failed_executions=settings.record_failed_executions,
    )
    return Services(
        settings=settings,
        store=store,
        tracker=tracker,
        sessions=sessions,
        connector=connector,
        ledger=ledger,
        persister=persister,
        coordinator=coordinator,
    )
