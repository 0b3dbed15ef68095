from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from yetify.domain.errors import FatalError, TransientError, UserRejectedError

logger = logging.getLogger(__name__)

STORE_PATH = "/api/store-complete-strategy"
STORE_METHOD = "store_complete_strategy"


@dataclass(frozen=True)
class RelaySubmission:
    transaction_hash: str
    explorer_url: str | None = None


class LedgerRelayClient:
    """Submits contract calls through the signing relay."""

    def __init__(
        self,
        base_url: str,
        *,
        contract_id: str,
        method_name: str = STORE_METHOD,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.contract_id = contract_id
        self.method_name = method_name
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def close(self) -> None:
        await self._client.aclose()

    async def submit(self, *, strategy_json: str, signer_id: str) -> RelaySubmission:
        body = {
            "strategy_json": strategy_json,
            "signer_id": signer_id,
            "contract_id": self.contract_id,
            "method_name": self.method_name,
        }
        try:
            response = await self._client.post(f"{self.base_url}{STORE_PATH}", json=body)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise TransientError(f"ledger relay unreachable: {exc}", details=type(exc).__name__) from exc

        payload = _json_object(response)
        if response.status_code >= 400 or payload.get("success") is False or "error" in payload:
            self._raise_relay_error(response, payload)

        tx_hash = payload.get("transactionHash")
        if payload.get("success") is not True or not isinstance(tx_hash, str) or not tx_hash:
            raise FatalError("ledger relay returned no transaction hash", details=response.text[:300])
        explorer_url = payload.get("explorerUrl")
        logger.info(
            "ledger_relay_submitted",
            extra={"extra": {"signer_id": signer_id, "transaction_hash": tx_hash}},
        )
        return RelaySubmission(
            transaction_hash=tx_hash,
            explorer_url=str(explorer_url) if explorer_url else None,
        )

    def _raise_relay_error(self, response: httpx.Response, payload: dict[str, Any]) -> None:
        message = str(payload.get("error") or f"ledger relay error status={response.status_code}")
        details = payload.get("details")
        details_text = str(details) if details is not None else response.text[:300]
        if payload.get("code") == "user_rejected":
            raise UserRejectedError(message, details=details_text)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(message, details=details_text)
        raise FatalError(message, details=details_text)


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        parsed = response.json()
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
