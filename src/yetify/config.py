from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_NEAR_NETWORK_DEFAULTS: dict[str, dict[str, str]] = {
    "testnet": {
        "rpc_url": "https://rpc.testnet.near.org",
        "wallet_url": "https://testnet.mynearwallet.com",
        "explorer_tx_url": "https://testnet.nearblocks.io/txns/",
    },
    "mainnet": {
        "rpc_url": "https://rpc.mainnet.near.org",
        "wallet_url": "https://app.mynearwallet.com",
        "explorer_tx_url": "https://nearblocks.io/txns/",
    },
}

STORE_BACKENDS = ("sqlite", "json", "memory")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    strategy_store_backend: str = Field(default="sqlite", alias="STRATEGY_STORE_BACKEND")
    strategy_db_path: str = Field(default="yetify_state.db", alias="STRATEGY_DB_PATH")
    strategy_json_path: str = Field(default="yetify_strategies.json", alias="STRATEGY_JSON_PATH")

    near_network: str = Field(default="testnet", alias="NEAR_NETWORK")
    near_rpc_url: str | None = Field(default=None, alias="NEAR_RPC_URL")
    near_wallet_url: str | None = Field(default=None, alias="NEAR_WALLET_URL")
    near_contract_id: str = Field(
        default="strategy-storage-yetify.testnet", alias="NEAR_CONTRACT_ID"
    )
    evm_rpc_url: str | None = Field(default=None, alias="EVM_RPC_URL")

    ledger_relay_url: str = Field(default="http://localhost:3000", alias="LEDGER_RELAY_URL")
    explorer_tx_url: str | None = Field(default=None, alias="EXPLORER_TX_URL")
    app_callback_url: str = Field(default="http://localhost:3000/", alias="APP_CALLBACK_URL")

    pending_connection_ttl_seconds: int = Field(
        default=600, alias="PENDING_CONNECTION_TTL_SECONDS"
    )
    connect_timeout_seconds: float = Field(default=60.0, alias="CONNECT_TIMEOUT_SECONDS")
    ledger_submit_timeout_seconds: float = Field(
        default=90.0, alias="LEDGER_SUBMIT_TIMEOUT_SECONDS"
    )
    record_failed_executions: bool = Field(default=True, alias="RECORD_FAILED_EXECUTIONS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("strategy_store_backend")
    def validate_store_backend(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in STORE_BACKENDS:
            raise ValueError(f"STRATEGY_STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}")
        return normalized

    @field_validator("near_network")
    def validate_near_network(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in _NEAR_NETWORK_DEFAULTS:
            raise ValueError("NEAR_NETWORK must be testnet or mainnet")
        return normalized

    @field_validator("pending_connection_ttl_seconds")
    def validate_pending_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("PENDING_CONNECTION_TTL_SECONDS must be > 0")
        return value

    @field_validator("connect_timeout_seconds")
    def validate_connect_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("CONNECT_TIMEOUT_SECONDS must be > 0")
        return value

    @field_validator("ledger_submit_timeout_seconds")
    def validate_submit_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("LEDGER_SUBMIT_TIMEOUT_SECONDS must be > 0")
        return value

    @field_validator("ledger_relay_url", "app_callback_url")
    def validate_http_url(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("URL settings must start with http:// or https://")
        return cleaned

    def resolved_near_rpc_url(self) -> str:
        return self.near_rpc_url or _NEAR_NETWORK_DEFAULTS[self.near_network]["rpc_url"]

    def resolved_near_wallet_url(self) -> str:
        return self.near_wallet_url or _NEAR_NETWORK_DEFAULTS[self.near_network]["wallet_url"]

    def resolved_explorer_tx_url(self) -> str:
        return (
            self.explorer_tx_url or _NEAR_NETWORK_DEFAULTS[self.near_network]["explorer_tx_url"]
        )
