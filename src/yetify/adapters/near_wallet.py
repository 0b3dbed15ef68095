"""NEAR wallet provider: redirect-based login and RPC-backed session checks."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

from yetify.adapters.jsonrpc import JsonRpcClient, RpcError
from yetify.adapters.wallet_provider import WalletProvider
from yetify.domain.wallet import ConnectFlow, PendingConnection, WalletSession

logger = logging.getLogger(__name__)

YOCTO_PER_NEAR = Decimal(10) ** 24
_REVOKED_CAUSES = frozenset({"UNKNOWN_ACCOUNT", "UNKNOWN_ACCESS_KEY", "INVALID_ACCOUNT"})


def format_near_amount(yocto: str | int, *, places: int = 4) -> str:
    try:
        amount = Decimal(str(yocto)) / YOCTO_PER_NEAR
        if not amount.is_finite():
            raise InvalidOperation
        return f"{amount.quantize(Decimal(1).scaleb(-places)):f}"
    except InvalidOperation as exc:
        raise ValueError(f"invalid yoctoNEAR amount: {yocto!r}") from exc


class NearWalletProvider(WalletProvider):
    name = "near"
    flow = ConnectFlow.REDIRECT

    def __init__(
        self,
        rpc: JsonRpcClient,
        *,
        wallet_url: str,
        contract_id: str,
    ) -> None:
        self._rpc = rpc
        self._wallet_url = wallet_url.rstrip("/")
        self._contract_id = contract_id

    def authorization_url(self, pending: PendingConnection) -> str:
        query = urlencode(
            {
                "success_url": pending.callback_url,
                "failure_url": pending.callback_url,
                "contract_id": self._contract_id,
            }
        )
        return f"{self._wallet_url}/login/?{query}"

    async def _query(self, request: dict[str, Any]) -> dict[str, Any]:
        result = await self._rpc.call("query", {"finality": "final", **request})
        if not isinstance(result, dict):
            raise ValueError("NEAR query result must be an object")
        if result.get("error"):
            raise RpcError(str(result["error"]), cause=_cause_from_text(str(result["error"])))
        return result

    async def view_account(self, account_id: str) -> dict[str, Any]:
        return await self._query({"request_type": "view_account", "account_id": account_id})

    async def validate_session(self, session: WalletSession) -> bool:
        try:
            await self.view_account(session.account_id)
            if session.public_key:
                await self._query(
                    {
                        "request_type": "view_access_key",
                        "account_id": session.account_id,
                        "public_key": session.public_key,
                    }
                )
        except RpcError as exc:
            if exc.cause in _REVOKED_CAUSES:
                logger.info(
                    "near_session_revoked",
                    extra={"extra": {"account_id": session.account_id, "cause": exc.cause}},
                )
                return False
            raise
        return True

    async def get_balance(self, account_id: str) -> str | None:
        account = await self.view_account(account_id)
        amount = account.get("amount")
        if amount is None:
            return None
        return format_near_amount(str(amount))

    async def close(self) -> None:
        await self._rpc.close()


def _cause_from_text(text: str) -> str | None:
    # Older nodes report a missing access key inside the result body.
    if "does not exist while viewing" in text:
        return "UNKNOWN_ACCESS_KEY"
    return None
