"""
Terra node transaction source.

Lists the mempool through the Tendermint RPC, hashes raw transactions
locally and decodes them through the LCD.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from typing import List, Optional

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from mempool_watcher.watcher.models import Transaction
from mempool_watcher.watcher.sources.base import (
    BaseTransactionSource,
    MalformedBlobError,
    MalformedResponseError,
    SourceUnreachableError,
)

logger = structlog.get_logger(__name__)


class _UnconfirmedTxs(BaseModel):
    txs: Optional[List[str]] = None


class UnconfirmedTxsResponse(BaseModel):
    """Body of GET /unconfirmed_txs."""

    result: _UnconfirmedTxs


class DecodeTxResponse(BaseModel):
    """Body of POST /txs/decode."""

    result: Transaction


def compute_tx_hash(blob: str) -> str:
    """
    Hash a base64 transaction the way the node does.

    Raises:
        MalformedBlobError: If the blob is not valid base64
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedBlobError(f"invalid base64 transaction: {e}") from e
    return hashlib.sha256(raw).hexdigest().upper()


class TerraTransactionSource(BaseTransactionSource):
    """Transaction source backed by a Terra full node."""

    def __init__(
        self,
        rpc_url: str = "http://localhost:26657",
        lcd_url: str = "https://lcd.terra.dev",
        timeout: float = 10.0,
        pending_limit: int = 1_000_000_000_000,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the Terra source.

        Args:
            rpc_url: Tendermint RPC base URL
            lcd_url: LCD base URL
            timeout: Request timeout in seconds
            pending_limit: limit parameter sent to /unconfirmed_txs
            http_client: Shared client; one is created on first use otherwise
        """
        super().__init__(rpc_url.rstrip("/"), lcd_url.rstrip("/"), timeout)
        self.pending_limit = pending_limit
        self._client = http_client
        self._owns_client = http_client is None

    def get_source_name(self) -> str:
        """Return source identifier."""
        return "terra"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def list_pending(self) -> List[str]:
        url = f"{self.rpc_url}/unconfirmed_txs"
        try:
            response = await self._get_client().get(
                url, params={"limit": self.pending_limit}
            )
            response.raise_for_status()
            body = UnconfirmedTxsResponse.model_validate(response.json())
        except httpx.HTTPError as e:
            raise SourceUnreachableError(f"GET {url} failed: {e}") from e
        except (ValueError, ValidationError) as e:
            raise SourceUnreachableError(f"malformed unconfirmed_txs response: {e}") from e

        return body.result.txs or []

    async def identifier_of(self, blob: str) -> str:
        return compute_tx_hash(blob)

    async def decode(self, blob: str) -> Transaction:
        url = f"{self.lcd_url}/txs/decode"
        try:
            response = await self._get_client().post(url, json={"tx": blob})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SourceUnreachableError(f"POST {url} failed: {e}") from e

        try:
            return DecodeTxResponse.model_validate(response.json()).result
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(f"malformed decode response: {e}") from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("terra_source.closed")
