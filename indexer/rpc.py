"""HTTP implementations of the provider and payment sender (chain simulator JSON surface)."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from indexer.errors import PaymentError, ProviderError
from indexer.models import RawEvent

logger = logging.getLogger("rpc")

DEFAULT_TIMEOUT_SEC = 10.0


class _HttpClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


class HttpChainProvider(_HttpClient):
    """Reads block height and logs. Transport and HTTP failures raise ProviderError."""

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"GET {path} returned a non-JSON body: {e}") from e

    async def _get_int(self, path: str, field: str) -> int:
        data = await self._get(path)
        try:
            return int(data[field])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"GET {path} returned no usable {field!r}: {e}") from e

    async def get_block_number(self) -> int:
        return await self._get_int("/chain/head", "block_number")

    async def get_block_timestamp(self, block_number: int) -> int:
        return await self._get_int(f"/chain/blocks/{block_number}", "timestamp")

    async def get_logs(
        self, contract_address: str, event_signature: str, from_block: int, to_block: int
    ) -> List[RawEvent]:
        rows = await self._get("/chain/logs", {
            "address": contract_address,
            "signature": event_signature,
            "from_block": from_block,
            "to_block": to_block,
        })
        try:
            return [
                RawEvent(
                    block_number=int(row["block_number"]),
                    log_index=int(row["log_index"]),
                    transaction_id=row.get("transaction_id", ""),
                    address=row["address"],
                    event=row["event"],
                    args=row.get("args") or {},
                    timestamp=int(row.get("timestamp", 0)),
                )
                for row in rows
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"malformed log response: {e}") from e


class HttpPaymentSender(_HttpClient):
    """Sends payouts. Any failure, including an unreadable response, raises PaymentError."""

    async def send(self, recipient: str, amount: int) -> str:
        try:
            resp = await self._client.post(
                "/chain/send", json={"recipient": recipient, "amount": str(amount)},
            )
            resp.raise_for_status()
            reference = resp.json()["reference"]
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            raise PaymentError(f"send to {recipient} rejected ({e.response.status_code}): {detail}") from e
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise PaymentError(f"send to {recipient} failed: {e}") from e
        logger.debug("Sent %d to %s (ref %s)", amount, recipient, reference)
        return reference
