"""Tests for cycle metrics and their aggregation."""

from mempool_watcher.watcher.metrics import AggregateMetrics, CycleStatus, WatcherMetrics


def run_cycle(metrics: WatcherMetrics, status: CycleStatus, **counts):
    run_id = metrics.start_run(source="mock")
    metrics.record(**counts)
    if status == CycleStatus.FAILED:
        metrics.record_error("node down")
    metrics.end_run(status)
    return run_id


class TestWatcherMetrics:
    def test_counters_accumulate_within_a_cycle(self):
        """Test stage counters add up within one cycle."""
        metrics = WatcherMetrics()
        metrics.start_run(source="mock")
        metrics.record(pending=3, hashed=3)
        metrics.record(published=2, duplicate=1)
        metrics.record_list_call(0.25)
        metrics.end_run()

        last = metrics.get_last_run()
        assert (last.pending, last.hashed, last.published, last.duplicate) == (3, 3, 2, 1)
        assert last.list_latency_seconds == 0.25
        assert last.ended_at is not None
        assert metrics.get_current_run() is None

    def test_recording_without_open_cycle_is_ignored(self):
        """Test recording with no open cycle has no effect."""
        metrics = WatcherMetrics()
        metrics.record(pending=5)
        metrics.record_error("ignored")
        metrics.end_run()

        assert metrics.get_last_run() is None

    def test_history_is_bounded_and_newest_first(self):
        """Test history keeps the latest cycles, newest first."""
        metrics = WatcherMetrics(history_size=2)
        ids = [run_cycle(metrics, CycleStatus.SUCCESS) for _ in range(3)]

        history = metrics.get_history()
        assert [c.run_id for c in history] == [ids[2], ids[1]]
        assert [c.run_id for c in metrics.get_history(limit=1)] == [ids[2]]

    def test_aggregate_and_success_rate(self):
        """Test aggregate totals and success rate over mixed cycles."""
        metrics = WatcherMetrics()
        run_cycle(metrics, CycleStatus.SUCCESS, pending=4, published=4)
        run_cycle(metrics, CycleStatus.PARTIAL, pending=2, published=1, decode_failed=1)
        run_cycle(metrics, CycleStatus.FAILED)
        run_cycle(metrics, CycleStatus.SUCCESS, pending=4, duplicate=4)

        agg = metrics.get_aggregate_metrics(hours=1)
        assert agg.total_runs == 4
        assert (agg.successful_runs, agg.partial_runs, agg.failed_runs) == (2, 1, 1)
        assert agg.total_pending_seen == 10
        assert agg.total_published == 5
        assert agg.total_duplicates == 4
        assert agg.total_errors == 1
        assert agg.avg_published_per_run == 1.25
        assert agg.last_success >= agg.last_failure
        assert metrics.get_success_rate() == 0.5

    def test_empty_window(self):
        """Test aggregation with no cycles."""
        metrics = WatcherMetrics()

        assert metrics.get_aggregate_metrics() == AggregateMetrics()
        assert metrics.get_success_rate() == 0.0

    def test_to_dict_is_json_friendly(self):
        """Test serialized metrics hold plain values."""
        metrics = WatcherMetrics()
        run_cycle(metrics, CycleStatus.FAILED)

        data = metrics.get_last_run().to_dict()
        assert data["status"] == "failed"
        assert data["error_count"] == 1
        assert isinstance(data["started_at"], str)
        assert isinstance(metrics.get_aggregate_metrics().to_dict()["last_failure"], str)
