from __future__ import annotations

from datetime import UTC, datetime, timedelta

from yetify.domain.wallet import (
    CallbackExpired,
    NotAPendingCallback,
    PendingConnection,
    WalletSession,
    parse_landing_params,
    resolve_callback,
    transaction_hashes,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _pending(now: datetime = NOW) -> PendingConnection:
    return PendingConnection.open(
        provider="near",
        nonce="n-1",
        callback_url="http://localhost:3000/",
        now=now,
        ttl_seconds=600,
    )


def test_live_marker_resolves_to_session() -> None:
    outcome = resolve_callback(
        _pending(), {"account_id": "alice.test", "public_key": "ed25519:abc"}, NOW
    )

    assert isinstance(outcome, WalletSession)
    assert outcome.account_id == "alice.test"
    assert outcome.provider == "near"
    assert outcome.public_key == "ed25519:abc"


def test_expired_marker_is_reported() -> None:
    pending = _pending()

    outcome = resolve_callback(pending, {"account_id": "alice.test"}, NOW + timedelta(minutes=10))

    assert outcome == CallbackExpired(pending=pending)


def test_landing_without_marker_or_account_is_not_a_callback() -> None:
    assert resolve_callback(None, {"account_id": "alice.test"}, NOW) == NotAPendingCallback(
        reason="no_pending_connection"
    )
    assert resolve_callback(_pending(), {}, NOW) == NotAPendingCallback(
        reason="missing_account_id"
    )


def test_parse_landing_params_from_url_and_raw_query() -> None:
    url = "http://localhost:3000/?account_id=alice.test&all_keys=ed25519%3Axyz"

    assert parse_landing_params(url) == {"account_id": "alice.test", "all_keys": "ed25519:xyz"}
    assert parse_landing_params("account_id=bob.test") == {"account_id": "bob.test"}
    assert parse_landing_params("http://localhost:3000/") == {}
    assert parse_landing_params({"account_id": ["carol.test"], "x": None}) == {
        "account_id": "carol.test"
    }


def test_transaction_hashes_are_split_on_commas() -> None:
    assert transaction_hashes({"transactionHashes": "h1, h2,"}) == ("h1", "h2")
    assert transaction_hashes({}) == ()


def test_pending_marker_survives_serialization() -> None:
    pending = _pending()

    assert PendingConnection.from_dict(pending.to_dict()) == pending
    assert pending.expires_at == NOW + timedelta(seconds=600)
