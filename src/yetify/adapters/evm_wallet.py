from __future__ import annotations

import logging
from decimal import Decimal

from yetify.adapters.jsonrpc import JsonRpcClient, RpcError
from yetify.adapters.wallet_provider import WalletProvider
from yetify.domain.errors import FatalError, LifecycleStep, UserRejectedError
from yetify.domain.models import utc_now
from yetify.domain.wallet import ConnectFlow, WalletSession
from yetify.services.ledger_errors import USER_REJECTED_RPC_CODE

logger = logging.getLogger(__name__)

WEI_PER_ETH = Decimal(10) ** 18


def format_eth_amount(wei_hex: str, *, places: int = 4) -> str:
    amount = Decimal(int(wei_hex, 16)) / WEI_PER_ETH
    return f"{amount.quantize(Decimal(1).scaleb(-places)):f}"


class EvmWalletProvider(WalletProvider):
    """Address-based signer reached over JSON-RPC (``eth_requestAccounts``)."""

    name = "evm"
    flow = ConnectFlow.DIRECT

    def __init__(self, rpc: JsonRpcClient) -> None:
        self._rpc = rpc

    async def request_session(self) -> WalletSession:
        try:
            accounts = await self._rpc.call("eth_requestAccounts")
        except RpcError as exc:
            if exc.code == USER_REJECTED_RPC_CODE:
                raise UserRejectedError(
                    "wallet connection rejected by user", details=str(exc), step=LifecycleStep.WALLET
                ) from exc
            raise
        if not isinstance(accounts, list) or not accounts:
            raise FatalError("wallet returned no accounts", step=LifecycleStep.WALLET)
        return WalletSession(provider=self.name, account_id=str(accounts[0]), connected_at=utc_now())

    async def validate_session(self, session: WalletSession) -> bool:
        accounts = await self._rpc.call("eth_accounts")
        if not isinstance(accounts, list):
            raise ValueError("eth_accounts result must be a list")
        known = {str(account).lower() for account in accounts}
        return session.account_id.lower() in known

    async def get_balance(self, account_id: str) -> str | None:
        result = await self._rpc.call("eth_getBalance", [account_id, "latest"])
        if not isinstance(result, str):
            return None
        return format_eth_amount(result)

    async def sign_out(self, session: WalletSession) -> None:
        await self._rpc.call("wallet_revokePermissions", [{"eth_accounts": {}}])
        logger.info("evm_permissions_revoked", extra={"extra": {"account_id": session.account_id}})

    async def close(self) -> None:
        await self._rpc.close()
