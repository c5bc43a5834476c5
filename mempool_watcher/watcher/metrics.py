"""
Mempool watcher metrics.

Tracks per-cycle stage counts, latency and errors, and aggregates
them over recent history.
"""

import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Deque, Dict, Iterable, List, Optional


class CycleStatus(str, Enum):
    """Outcome of a polling cycle."""

    SUCCESS = "success"
    PARTIAL = "partial"  # some items dropped by hash, decode or publish failures
    FAILED = "failed"  # listing failed, nothing else ran
    CANCELLED = "cancelled"  # watcher stopped mid-cycle


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class CycleMetrics:
    """Counters for a single polling cycle."""

    run_id: str
    source: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    status: CycleStatus = CycleStatus.SUCCESS

    pending: int = 0
    hashed: int = 0
    hash_failed: int = 0
    duplicate: int = 0
    decoded: int = 0
    decode_failed: int = 0
    published: int = 0
    publish_failed: int = 0
    swept: int = 0

    duration_seconds: float = 0.0
    list_latency_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **asdict(self),
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "status": self.status.value,
            "error_count": self.error_count,
        }


@dataclass
class AggregateMetrics:
    """Totals and averages over a window of finished cycles."""

    total_runs: int = 0
    successful_runs: int = 0
    partial_runs: int = 0
    failed_runs: int = 0
    cancelled_runs: int = 0

    total_pending_seen: int = 0
    total_published: int = 0
    total_duplicates: int = 0
    total_errors: int = 0

    avg_duration_seconds: float = 0.0
    avg_list_latency_seconds: float = 0.0
    avg_published_per_run: float = 0.0

    first_run: Optional[datetime] = None
    last_run: Optional[datetime] = None
    last_success: Optional[datetime] = None
    last_failure: Optional[datetime] = None

    @classmethod
    def from_cycles(cls, cycles: List[CycleMetrics]) -> "AggregateMetrics":
        if not cycles:
            return cls()

        n = len(cycles)
        statuses = Counter(c.status for c in cycles)
        published = sum(c.published for c in cycles)

        def latest(status: CycleStatus) -> Optional[datetime]:
            return next(
                (c.started_at for c in reversed(cycles) if c.status == status), None
            )

        return cls(
            total_runs=n,
            successful_runs=statuses[CycleStatus.SUCCESS],
            partial_runs=statuses[CycleStatus.PARTIAL],
            failed_runs=statuses[CycleStatus.FAILED],
            cancelled_runs=statuses[CycleStatus.CANCELLED],
            total_pending_seen=sum(c.pending for c in cycles),
            total_published=published,
            total_duplicates=sum(c.duplicate for c in cycles),
            total_errors=sum(c.error_count for c in cycles),
            avg_duration_seconds=sum(c.duration_seconds for c in cycles) / n,
            avg_list_latency_seconds=sum(c.list_latency_seconds for c in cycles) / n,
            avg_published_per_run=published / n,
            first_run=cycles[0].started_at,
            last_run=cycles[-1].started_at,
            last_success=latest(CycleStatus.SUCCESS),
            last_failure=latest(CycleStatus.FAILED),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("first_run", "last_run", "last_success", "last_failure"):
            data[key] = _iso(data[key])
        return data


class WatcherMetrics:
    """
    In-memory metrics for the mempool watcher.

    Holds the cycle in progress plus the last ``history_size`` finished ones.
    Counters are updated from the watcher's own control flow only.
    """

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self._history: Deque[CycleMetrics] = deque(maxlen=history_size)
        self._current: Optional[CycleMetrics] = None
        self._current_started = 0.0
        self._cycles = 0

    def start_run(self, source: str) -> str:
        """Open a new cycle and return its run id."""
        self._cycles += 1
        now = datetime.now(timezone.utc)
        run_id = f"cycle-{now:%Y%m%d-%H%M%S}-{self._cycles}"
        self._current = CycleMetrics(run_id=run_id, source=source, started_at=now)
        self._current_started = time.perf_counter()
        return run_id

    def end_run(self, status: CycleStatus = CycleStatus.SUCCESS):
        cycle = self._current
        if cycle is None:
            return
        cycle.status = status
        cycle.ended_at = datetime.now(timezone.utc)
        cycle.duration_seconds = time.perf_counter() - self._current_started
        self._history.append(cycle)
        self._current = None

    def record(self, **counts: int):
        """Add to the stage counters of the open cycle, e.g. ``record(hashed=3)``."""
        if self._current is None:
            return
        for name, value in counts.items():
            setattr(self._current, name, getattr(self._current, name) + value)

    def record_list_call(self, latency_seconds: float):
        if self._current is not None:
            self._current.list_latency_seconds += latency_seconds

    def record_error(self, error: str):
        if self._current is not None:
            self._current.errors.append(error)

    def get_current_run(self) -> Optional[CycleMetrics]:
        return self._current

    def get_last_run(self) -> Optional[CycleMetrics]:
        return self._history[-1] if self._history else None

    def get_history(self, limit: Optional[int] = None) -> List[CycleMetrics]:
        """Finished cycles, newest first."""
        newest_first: Iterable[CycleMetrics] = reversed(self._history)
        return list(newest_first)[:limit] if limit else list(newest_first)

    def _window(self, hours: Optional[int]) -> List[CycleMetrics]:
        if not hours:
            return list(self._history)
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        return [c for c in self._history if c.started_at >= cutoff]

    def get_aggregate_metrics(self, hours: Optional[int] = None) -> AggregateMetrics:
        """Aggregate over the last ``hours`` hours, or all retained history."""
        return AggregateMetrics.from_cycles(self._window(hours))

    def get_success_rate(self, hours: Optional[int] = None) -> float:
        """Share of fully successful cycles, 0.0 when there were none."""
        agg = self.get_aggregate_metrics(hours)
        return agg.successful_runs / agg.total_runs if agg.total_runs else 0.0
