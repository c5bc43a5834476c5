"""Data models for decoded mempool transactions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class Coin(_Frozen):
    """Amount of a single denomination."""

    denom: str = Field(..., description="Denomination, e.g. uluna")
    amount: str = Field(..., description="Integer amount as a string")


class Fee(_Frozen):
    """Fee paid by the transaction."""

    amount: list[Coin] = Field(default_factory=list, description="Fee coins")
    gas: str = Field(..., description="Gas limit as a string")


class Msg(_Frozen):
    """A single message carried by the transaction."""

    type_: str = Field(..., alias="type", description="Message type URL or name")
    value: Any = Field(default=None, description="Message body, left undecoded")


class PubKey(_Frozen):
    type_: str = Field(..., alias="type")
    value: str


class Signature(_Frozen):
    pub_key: PubKey
    signature: str


class Transaction(_Frozen):
    """Decoded transaction as returned by the LCD decode endpoint."""

    msg: list[Msg] = Field(default_factory=list, description="Messages")
    fee: Fee = Field(..., description="Fee and gas")
    signatures: list[Signature] = Field(default_factory=list, description="Signatures")
    memo: str = Field(default="", description="Free-form memo")
    timeout_height: str = Field(default="", description="Timeout height, empty if unset")


class MempoolItem(_Frozen):
    """A newly surfaced transaction as delivered to subscribers."""

    tx_hash: str = Field(..., description="Uppercase hex SHA-256 of the raw tx")
    tx: Transaction = Field(..., description="Decoded transaction, unchanged")
    observed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the watcher surfaced the transaction",
    )
