from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class RpcError(RuntimeError):
    """Error object returned by a JSON-RPC endpoint."""

    def __init__(
        self,
        message: str,
        *,
        code: int | None = None,
        name: str | None = None,
        cause: str | None = None,
        data: object = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.name = name
        self.cause = cause
        self.data = data


def _rpc_error_from_payload(error: object) -> RpcError:
    if not isinstance(error, dict):
        return RpcError(str(error))
    cause = error.get("cause")
    cause_name = cause.get("name") if isinstance(cause, dict) else None
    code = error.get("code")
    return RpcError(
        str(error.get("message") or "rpc error"),
        code=int(code) if isinstance(code, int) else None,
        name=str(error["name"]) if error.get("name") is not None else None,
        cause=str(cause_name) if cause_name is not None else None,
        data=error.get("data"),
    )


class JsonRpcClient:
    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, method: str, params: Any = None) -> Any:
        request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or []}
        response = await self._client.post(self.url, json=body)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("JSON-RPC response must be an object")
        if payload.get("error") is not None:
            error = _rpc_error_from_payload(payload["error"])
            logger.debug(
                "jsonrpc_error",
                extra={
                    "extra": {
                        "method": method,
                        "code": error.code,
                        "cause": error.cause,
                    }
                },
            )
            raise error
        if "result" not in payload:
            raise ValueError("JSON-RPC response carries neither result nor error")
        return payload["result"]
