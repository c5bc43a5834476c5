"""
Mempool watcher service.

Periodically lists the node's pending transactions, hashes them
concurrently, drops the ones already published, decodes the rest
concurrently and broadcasts every new transaction to subscribers.
A transaction is remembered as seen only once it has been delivered.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Dict, Iterable, List, Optional, Tuple, TypeVar

import structlog

from mempool_watcher.watcher.broadcast import Broadcaster, DeliveryError, Subscription
from mempool_watcher.watcher.cache import TTLCache
from mempool_watcher.watcher.config import WatcherConfig, get_watcher_config
from mempool_watcher.watcher.metrics import CycleStatus, WatcherMetrics
from mempool_watcher.watcher.models import MempoolItem, Transaction
from mempool_watcher.watcher.retry import CircuitBreaker, CircuitOpenError, retry_with_backoff
from mempool_watcher.watcher.sources.base import BaseTransactionSource, SourceError
from mempool_watcher.watcher.sources.mock_source import MockTransactionSource
from mempool_watcher.watcher.sources.terra import TerraTransactionSource

logger = structlog.get_logger(__name__)

R = TypeVar("R")


class MempoolWatcher:
    """
    Main mempool polling service.

    Only one cycle runs at a time, so the dedup cache has a single writer.
    Hash and decode calls run concurrently but never touch the cache; their
    results are consumed on the cycle's own control flow.
    """

    def __init__(
        self,
        source: Optional[BaseTransactionSource] = None,
        config: Optional[WatcherConfig] = None,
        cache: Optional[TTLCache[Transaction]] = None,
        broadcaster: Optional[Broadcaster[MempoolItem]] = None,
    ):
        """
        Initialize the watcher.

        Args:
            source: Transaction source (defaults to the configured one)
            config: Watcher configuration (defaults to loaded config)
            cache: Dedup cache, mostly for tests that control the clock
            broadcaster: Channel new transactions are published into
        """
        self.config = config or get_watcher_config()
        self.source = source or self._create_default_source()
        self.cache: TTLCache[Transaction] = (
            cache if cache is not None else TTLCache(self.config.cache_ttl_seconds)
        )
        self.broadcaster: Broadcaster[MempoolItem] = (
            broadcaster
            if broadcaster is not None
            else Broadcaster(self.config.subscriber_queue_size)
        )
        self.metrics = WatcherMetrics(history_size=self.config.metrics_history_size)
        self.circuit_breaker = CircuitBreaker(self.config.circuit_breaker)

        self._running = False
        self._task: Optional[asyncio.Task] = None
        # Held for a whole cycle: the cache lookup and insert of two cycles must not interleave.
        self._cycle_lock = asyncio.Lock()
        self._last_poll_time: Optional[datetime] = None

        logger.info(
            "watcher.initialized",
            source=self.source.get_source_name(),
            poll_interval_seconds=self.config.poll_interval_seconds,
            cache_ttl_seconds=self.cache.ttl_seconds,
            enabled=self.config.enabled,
        )

    def _create_default_source(self) -> BaseTransactionSource:
        """Create default source based on config."""
        if self.config.source_type == "mock":
            return MockTransactionSource()
        return TerraTransactionSource(
            rpc_url=self.config.rpc_url,
            lcd_url=self.config.lcd_url,
            timeout=self.config.api_timeout,
            pending_limit=self.config.pending_limit,
        )

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    def subscribe(self, maxsize: Optional[int] = None) -> Subscription[MempoolItem]:
        """Attach a subscriber that receives every transaction published from now on."""
        return self.broadcaster.subscribe(maxsize)

    async def run(self, maxsize: Optional[int] = None) -> Subscription[MempoolItem]:
        """Subscribe, then start the loop, so the first cycle is not missed."""
        subscription = self.subscribe(maxsize)
        await self.start()
        return subscription

    async def start(self):
        """Start the polling loop in the background."""
        if self._running:
            logger.warning("watcher.already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._polling_loop())
        logger.info(
            "watcher.started",
            interval_seconds=self.config.poll_interval_seconds,
        )

    async def stop(self):
        """
        Stop the polling loop.

        In-flight hash and decode calls are cancelled, subscribers see the
        end of their stream and the source connection is released.
        """
        if not self._running:
            logger.debug("watcher.not_running")
            return

        self._running = False
        logger.info("watcher.stopping")

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.broadcaster.close()
        await self.source.close()
        logger.info("watcher.stopped")

    async def _polling_loop(self):
        """Poll, sleep, repeat until stopped."""
        while self._running:
            try:
                if self.config.enabled:
                    await self.poll_once()
                else:
                    logger.debug("watcher.disabled_skipping")

                await asyncio.sleep(self.config.poll_interval_seconds)

            except asyncio.CancelledError:
                logger.info("watcher.loop_cancelled")
                break
            except Exception as e:
                logger.error(
                    "watcher.loop_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                # Keep polling even after errors
                await asyncio.sleep(self.config.poll_interval_seconds)

    async def poll_once(self) -> Dict[str, Any]:
        """
        Execute a single cycle: list, hash, filter, decode, publish, sweep.

        Cycles never overlap: a call made while another cycle is in progress
        waits for it to finish. Never raises for source or delivery failures;
        they are logged and reflected in the returned status.

        Returns:
            Dictionary with cycle results and stage counts
        """
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> Dict[str, Any]:
        run_id = self.metrics.start_run(source=self.source.get_source_name())
        log = logger.bind(run_id=run_id)

        try:
            status, error = await self._run_stages(run_id, log)
        except asyncio.CancelledError:
            # Stopped mid-cycle; whatever was published so far is already cached.
            self.metrics.record_error("cycle cancelled")
            self.metrics.end_run(CycleStatus.CANCELLED)
            log.warning("watcher.cycle.cancelled")
            raise

        if error is not None:
            self.metrics.record_error(error)

        swept = self.cache.sweep()
        self.metrics.record(swept=swept)
        if swept:
            log.debug("watcher.cache.swept", removed=swept, remaining=len(self.cache))

        result = self._build_result(run_id)
        self.metrics.end_run(status)
        self._last_poll_time = datetime.now(timezone.utc)

        last_run = self.metrics.get_last_run()
        result["status"] = status.value
        result["duration_seconds"] = last_run.duration_seconds if last_run else 0.0
        if error is not None:
            result["error"] = error

        log.info(
            "watcher.cycle.completed",
            status=status.value,
            pending=result["pending"],
            duplicate=result["duplicate"],
            published=result["published"],
            duration_seconds=result["duration_seconds"],
        )
        return result

    async def _run_stages(
        self, run_id: str, log: Any
    ) -> Tuple[CycleStatus, Optional[str]]:
        """Run the cycle up to publishing. Returns its status and listing error, if any."""
        try:
            blobs = await self._list_pending_with_resilience()
        except CircuitOpenError as e:
            log.warning("watcher.cycle.skipped_circuit_open", error=str(e))
            return CycleStatus.FAILED, "Circuit breaker is open"
        except SourceError as e:
            log.error(
                "watcher.list_pending.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return CycleStatus.FAILED, str(e)
        except Exception as e:
            log.error(
                "watcher.list_pending.failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return CycleStatus.FAILED, str(e)

        self.metrics.record(pending=len(blobs))
        log.debug("watcher.list_pending.ok", count=len(blobs))

        pending = await self._hash_blobs(run_id, blobs)
        fresh = self._drop_already_sent(run_id, pending)
        await self._decode_and_publish(run_id, fresh)

        current = self.metrics.get_current_run()
        if current and (current.hash_failed or current.decode_failed or current.publish_failed):
            return CycleStatus.PARTIAL, None
        return CycleStatus.SUCCESS, None

    async def _list_pending_with_resilience(self) -> List[str]:
        """List pending blobs through the circuit breaker and retry policy."""

        async def list_pending() -> List[str]:
            started = time.perf_counter()
            try:
                return await self.source.list_pending()
            finally:
                self.metrics.record_list_call(time.perf_counter() - started)

        async def list_with_retry() -> List[str]:
            return await retry_with_backoff(
                list_pending, self.config.retry, operation_name="list_pending"
            )

        return await self.circuit_breaker.call_async(list_with_retry)

    async def _hash_blobs(self, run_id: str, blobs: List[str]) -> Dict[str, str]:
        """Hash every blob concurrently. Returns {tx_hash: blob}, failures left out."""
        pending: Dict[str, str] = {}
        hashed = 0
        async for tx_hash, blob in self._as_completed(
            self._hash_one(run_id, blob) for blob in blobs
        ):
            hashed += 1
            pending[tx_hash] = blob

        self.metrics.record(hashed=hashed, hash_failed=len(blobs) - hashed)
        return pending

    def _drop_already_sent(self, run_id: str, pending: Dict[str, str]) -> Dict[str, str]:
        fresh: Dict[str, str] = {}
        duplicate = 0
        for tx_hash, blob in pending.items():
            if self.cache.lookup(tx_hash) is not None:
                logger.debug("watcher.tx.already_sent", run_id=run_id, tx=tx_hash)
                duplicate += 1
            else:
                fresh[tx_hash] = blob

        self.metrics.record(duplicate=duplicate)
        return fresh

    async def _decode_and_publish(self, run_id: str, fresh: Dict[str, str]) -> None:
        """Decode new blobs concurrently and publish each one as soon as it's ready."""
        decoded = 0
        published = 0
        async for tx_hash, tx in self._as_completed(
            self._decode_one(run_id, tx_hash, blob) for tx_hash, blob in fresh.items()
        ):
            decoded += 1
            if self._publish(run_id, tx_hash, tx):
                published += 1

        self.metrics.record(
            decoded=decoded,
            decode_failed=len(fresh) - decoded,
            published=published,
            publish_failed=decoded - published,
        )

    def _publish(self, run_id: str, tx_hash: str, tx: Transaction) -> bool:
        """Broadcast a transaction; cache it only if someone received it."""
        try:
            receivers = self.broadcaster.publish(MempoolItem(tx_hash=tx_hash, tx=tx))
        except DeliveryError as e:
            logger.error("watcher.publish.failed", run_id=run_id, tx=tx_hash, error=str(e))
            return False

        self.cache.insert(tx_hash, tx)
        logger.info("watcher.tx.new", run_id=run_id, tx=tx_hash, receivers=receivers)
        return True

    async def _hash_one(self, run_id: str, blob: str) -> Optional[Tuple[str, str]]:
        try:
            tx_hash = await self.source.identifier_of(blob)
        except SourceError as e:
            logger.warning(
                "watcher.hash.failed",
                run_id=run_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except Exception as e:
            logger.error("watcher.hash.failed", run_id=run_id, error=str(e), exc_info=True)
            return None
        return tx_hash, blob

    async def _decode_one(
        self, run_id: str, tx_hash: str, blob: str
    ) -> Optional[Tuple[str, Transaction]]:
        try:
            tx = await self.source.decode(blob)
        except SourceError as e:
            logger.warning(
                "watcher.decode.failed",
                run_id=run_id,
                tx=tx_hash,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except Exception as e:
            logger.error(
                "watcher.decode.failed", run_id=run_id, tx=tx_hash, error=str(e), exc_info=True
            )
            return None
        return tx_hash, tx

    @staticmethod
    async def _as_completed(
        coros: Iterable[Awaitable[Optional[R]]],
    ) -> AsyncIterator[R]:
        """
        Run every coroutine at once and yield non-None results in completion order.

        Tasks still pending when the consumer goes away (e.g. on cancellation)
        are cancelled.
        """
        tasks = [asyncio.ensure_future(coro) for coro in coros]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if result is not None:
                    yield result
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    def _build_result(self, run_id: str) -> Dict[str, Any]:
        current = self.metrics.get_current_run()
        counts = {
            name: getattr(current, name, 0)
            for name in (
                "pending",
                "hashed",
                "hash_failed",
                "duplicate",
                "decoded",
                "decode_failed",
                "published",
                "publish_failed",
                "swept",
            )
        }
        return {"run_id": run_id, **counts}

    def get_status(self) -> Dict[str, Any]:
        """
        Get current watcher status and metrics.

        Returns:
            Status dictionary
        """
        last_run = self.metrics.get_last_run()
        aggregate = self.metrics.get_aggregate_metrics(hours=24)

        return {
            "running": self._running,
            "enabled": self.config.enabled,
            "last_poll_time": (
                self._last_poll_time.isoformat() if self._last_poll_time else None
            ),
            "circuit_breaker": self.circuit_breaker.get_state(),
            "cache_size": len(self.cache),
            "subscribers": self.broadcaster.subscriber_count,
            "last_run": last_run.to_dict() if last_run else None,
            "metrics_24h": aggregate.to_dict(),
            "success_rate_24h": self.metrics.get_success_rate(hours=24),
            "config": {
                "poll_interval_seconds": self.config.poll_interval_seconds,
                "cache_ttl_seconds": self.cache.ttl_seconds,
                "subscriber_queue_size": self.config.subscriber_queue_size,
                "source": self.source.get_source_name(),
            },
        }

    def get_metrics(self, hours: Optional[int] = None) -> Dict[str, Any]:
        """
        Get aggregate metrics.

        Args:
            hours: Limit to last N hours (None = all history)
        """
        aggregate = self.metrics.get_aggregate_metrics(hours)
        return {
            "enabled": self.config.enabled,
            "aggregate": aggregate.to_dict(),
            "success_rate": self.metrics.get_success_rate(hours),
            "recent_runs": [r.to_dict() for r in self.metrics.get_history(limit=10)],
        }


# Global watcher instance
_watcher_instance: Optional[MempoolWatcher] = None


def get_watcher() -> MempoolWatcher:
    """
    Get or create the global watcher instance.

    Returns:
        MempoolWatcher singleton
    """
    global _watcher_instance
    if _watcher_instance is None:
        _watcher_instance = MempoolWatcher()
    return _watcher_instance


def set_watcher(watcher: Optional[MempoolWatcher]) -> None:
    """Replace the global watcher instance (None resets it)."""
    global _watcher_instance
    _watcher_instance = watcher
