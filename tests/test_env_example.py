from __future__ import annotations

from pathlib import Path

from yetify.config import Settings

ENV_EXAMPLE = Path(__file__).resolve().parents[1] / ".env.example"

EXPECTED_KEYS = {
    "STRATEGY_STORE_BACKEND",
    "STRATEGY_DB_PATH",
    "STRATEGY_JSON_PATH",
    "NEAR_NETWORK",
    "NEAR_CONTRACT_ID",
    "LEDGER_RELAY_URL",
    "APP_CALLBACK_URL",
    "PENDING_CONNECTION_TTL_SECONDS",
    "CONNECT_TIMEOUT_SECONDS",
    "LEDGER_SUBMIT_TIMEOUT_SECONDS",
    "RECORD_FAILED_EXECUTIONS",
    "LOG_LEVEL",
}


def _env_lines() -> list[str]:
    return [
        line.strip()
        for line in ENV_EXAMPLE.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]


def test_env_example_is_multiline_and_key_value() -> None:
    lines = _env_lines()

    assert len(lines) > 1
    assert all("=" in line for line in lines)
    keys = {line.split("=", 1)[0] for line in lines}
    assert EXPECTED_KEYS.issubset(keys)


def test_env_example_values_load_into_settings(monkeypatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env.local"
    env_file.write_text(ENV_EXAMPLE.read_text(encoding="utf-8"), encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    for key in EXPECTED_KEYS:
        monkeypatch.delenv(key, raising=False)

    settings = Settings(_env_file=str(env_file))

    assert settings.strategy_store_backend == "sqlite"
    assert settings.near_network == "testnet"
    assert settings.pending_connection_ttl_seconds == 600
    assert settings.record_failed_executions is True
    assert settings.evm_rpc_url is None
