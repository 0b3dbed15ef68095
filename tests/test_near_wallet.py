from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from yetify.adapters.jsonrpc import JsonRpcClient, RpcError
from yetify.adapters.near_wallet import NearWalletProvider, format_near_amount
from yetify.domain.wallet import PendingConnection, WalletSession

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
RPC_URL = "https://rpc.testnet.near.org"


def _provider(handler) -> NearWalletProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NearWalletProvider(
        JsonRpcClient(RPC_URL, client=client),
        wallet_url="https://testnet.mynearwallet.com/",
        contract_id="strategy-storage-yetify.testnet",
    )


def _unknown(name: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "error": {
            "name": "HANDLER_ERROR",
            "cause": {"name": name, "info": {}},
            "code": -32000,
            "message": "Server error",
        },
    }


def test_authorization_url_targets_wallet_login() -> None:
    provider = _provider(lambda request: httpx.Response(500))
    pending = PendingConnection.open(
        provider="near",
        nonce="n",
        callback_url="http://localhost:3000/",
        now=NOW,
        ttl_seconds=600,
    )

    url = provider.authorization_url(pending)

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == (
        "https://testnet.mynearwallet.com/login/"
    )
    assert query["success_url"] == ["http://localhost:3000/"]
    assert query["failure_url"] == ["http://localhost:3000/"]
    assert query["contract_id"] == ["strategy-storage-yetify.testnet"]


def test_balance_is_converted_from_yocto() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": 1, "result": {"amount": "12500000000000000000000000"}},
        )

    balance = asyncio.run(_provider(handler).get_balance("alice.testnet"))

    assert balance == "12.5000"
    assert seen[0]["method"] == "query"
    assert seen[0]["params"] == {
        "finality": "final",
        "request_type": "view_account",
        "account_id": "alice.testnet",
    }


def test_unknown_account_means_revoked() -> None:
    provider = _provider(lambda request: httpx.Response(200, json=_unknown("UNKNOWN_ACCOUNT")))
    session = WalletSession(provider="near", account_id="gone.testnet", connected_at=NOW)

    assert asyncio.run(provider.validate_session(session)) is False


def test_missing_access_key_means_revoked() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        if body["params"]["request_type"] == "view_account":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": {"amount": "0"}})
        return httpx.Response(200, json=_unknown("UNKNOWN_ACCESS_KEY"))

    provider = _provider(handler)
    session = WalletSession(
        provider="near", account_id="alice.testnet", connected_at=NOW, public_key="ed25519:k"
    )

    assert asyncio.run(provider.validate_session(session)) is False


def test_other_rpc_errors_propagate() -> None:
    provider = _provider(lambda request: httpx.Response(200, json=_unknown("TIMEOUT_ERROR")))
    session = WalletSession(provider="near", account_id="alice.testnet", connected_at=NOW)

    with pytest.raises(RpcError) as exc_info:
        asyncio.run(provider.validate_session(session))

    assert exc_info.value.cause == "TIMEOUT_ERROR"


def test_http_failures_propagate_as_httpx_errors() -> None:
    provider = _provider(lambda request: httpx.Response(503, text="unavailable"))
    session = WalletSession(provider="near", account_id="alice.testnet", connected_at=NOW)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(provider.validate_session(session))


def test_format_near_amount_rounds_to_four_places() -> None:
    assert format_near_amount("1") == "0.0000"
    assert format_near_amount(10**24 * 3) == "3.0000"


@pytest.mark.parametrize("amount", ["not-a-number", "NaN", "Infinity", ""])
def test_malformed_amount_is_a_value_error(amount: str) -> None:
    with pytest.raises(ValueError, match="invalid yoctoNEAR amount"):
        format_near_amount(amount)


def test_balance_with_malformed_amount_raises_value_error() -> None:
    provider = _provider(
        lambda request: httpx.Response(
            200, json={"jsonrpc": "2.0", "id": 1, "result": {"amount": "not-a-number"}}
        )
    )

    with pytest.raises(ValueError):
        asyncio.run(provider.get_balance("alice.testnet"))
