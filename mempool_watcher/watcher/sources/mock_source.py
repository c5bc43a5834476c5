"""
Mock transaction source for testing and development.

Simulates a node mempool that slowly churns: every listing evicts the
oldest pending transaction and admits a fresh one. Decoding is synthetic
but deterministic per blob.
"""

import asyncio
import base64
import hashlib
import os
import random
from collections import deque
from typing import Iterable, List, Optional

from mempool_watcher.watcher.models import Transaction
from mempool_watcher.watcher.sources.base import (
    BaseTransactionSource,
    SourceUnreachableError,
)
from mempool_watcher.watcher.sources.terra import compute_tx_hash

MSG_TYPES = [
    "bank/MsgSend",
    "wasm/MsgExecuteContract",
    "staking/MsgDelegate",
    "distribution/MsgWithdrawDelegationReward",
    "market/MsgSwap",
]

DENOMS = ["uluna", "uusd", "ukrw"]


class MockTransactionSource(BaseTransactionSource):
    """
    Mock source that generates random pending transactions.

    Pass `blobs` to pin the pool to a fixed set instead of churning.
    """

    def __init__(
        self,
        blobs: Optional[Iterable[str]] = None,
        pool_size: int = 5,
        failure_rate: float = 0.0,
        latency_ms: int = 100,
    ):
        """
        Initialize mock source.

        Args:
            blobs: Fixed pool of base64 blobs (disables churn)
            pool_size: Number of pending transactions kept when churning
            failure_rate: Probability of a simulated listing failure (0.0 to 1.0)
            latency_ms: Simulated network latency in milliseconds
        """
        super().__init__()
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self._churn = blobs is None
        if blobs is None:
            self._pool = deque(
                (self._generate_blob() for _ in range(pool_size)), maxlen=pool_size
            )
        else:
            self._pool = deque(blobs)

    def get_source_name(self) -> str:
        """Return source identifier."""
        return "mock"

    async def list_pending(self) -> List[str]:
        await self._simulate_latency()

        if random.random() < self.failure_rate:
            raise SourceUnreachableError("Simulated node connection failure")

        if self._churn:
            self._pool.append(self._generate_blob())
        return list(self._pool)

    async def identifier_of(self, blob: str) -> str:
        await self._simulate_latency()
        return compute_tx_hash(blob)

    async def decode(self, blob: str) -> Transaction:
        await self._simulate_latency()

        # Seed from the blob so the same blob always decodes the same way.
        rng = random.Random(hashlib.sha256(blob.encode()).digest())
        sender = self._address(rng)
        denom = rng.choice(DENOMS)

        return Transaction.model_validate(
            {
                "msg": [
                    {
                        "type": rng.choice(MSG_TYPES),
                        "value": {
                            "from_address": sender,
                            "to_address": self._address(rng),
                            "amount": [
                                {"denom": denom, "amount": str(rng.randint(1, 10**9))}
                            ],
                        },
                    }
                ],
                "fee": {
                    "amount": [{"denom": denom, "amount": str(rng.randint(100, 10**6))}],
                    "gas": str(rng.randint(50_000, 500_000)),
                },
                "signatures": [
                    {
                        "pub_key": {
                            "type": "tendermint/PubKeySecp256k1",
                            "value": base64.b64encode(rng.randbytes(33)).decode(),
                        },
                        "signature": base64.b64encode(rng.randbytes(64)).decode(),
                    }
                ],
                "memo": rng.choice(["", "", "mock", "airdrop"]),
                "timeout_height": "0",
            }
        )

    @staticmethod
    def _generate_blob() -> str:
        return base64.b64encode(os.urandom(random.randint(180, 320))).decode()

    @staticmethod
    def _address(rng: random.Random) -> str:
        return "terra1" + "".join(rng.choice("023456789acdefghjklmnpqrstuvwxyz") for _ in range(38))

    async def _simulate_latency(self):
        """Simulate network latency."""
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
