import base64
from typing import Iterable, List, Optional

import pytest

from mempool_watcher.watcher.cache import TTLCache
from mempool_watcher.watcher.config import WatcherConfig
from mempool_watcher.watcher.poller import MempoolWatcher
from mempool_watcher.watcher.sources.mock_source import MockTransactionSource


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blobs() -> List[str]:
    """Two distinct, valid base64 raw transactions."""
    return [
        base64.b64encode(f"raw-tx-{label}".encode()).decode() for label in ("1", "2")
    ]


@pytest.fixture
def make_watcher(clock):
    """Factory for a watcher over a fixed mock mempool and a fake cache clock."""

    def _make(
        blobs: Optional[Iterable[str]] = None,
        ttl: float = 30.0,
        interval: float = 2.0,
        **config_overrides,
    ) -> MempoolWatcher:
        config = WatcherConfig(
            poll_interval_seconds=interval,
            cache_ttl_seconds=ttl,
            source_type="mock",
            **config_overrides,
        )
        source = MockTransactionSource(blobs=list(blobs or []), latency_ms=0)
        cache: TTLCache = TTLCache(ttl, clock=clock)
        return MempoolWatcher(source=source, config=config, cache=cache)

    return _make
