"""
Mempool watcher CLI commands.

Provides a command-line interface for running single cycles, watching
the mempool continuously and viewing metrics.
"""

import asyncio
import sys
from typing import Optional

import structlog

from mempool_watcher.core.config import get_settings
from mempool_watcher.core.logging import configure_logging
from mempool_watcher.watcher.config import get_watcher_config
from mempool_watcher.watcher.poller import MempoolWatcher

logger = structlog.get_logger(__name__)


def print_result(result: dict):
    """Pretty print a cycle result."""
    print(f"\nRun ID: {result['run_id']}")
    print(f"Status: {result['status']}")
    print(f"Pending: {result['pending']}")
    print(f"Hashed: {result['hashed']} ({result['hash_failed']} failed)")
    print(f"Already sent: {result['duplicate']}")
    print(f"Decoded: {result['decoded']} ({result['decode_failed']} failed)")
    print(f"Published: {result['published']} ({result['publish_failed']} undelivered)")
    if result.get("error"):
        print(f"Error: {result['error']}")
    print(f"Duration: {result.get('duration_seconds', 0):.2f}s")


def print_status(status: dict):
    """Pretty print watcher status."""
    print("\n=== Mempool Watcher Status ===\n")
    print(f"Running: {status['running']}")
    print(f"Enabled: {status['enabled']}")
    print(f"Last Poll: {status['last_poll_time'] or 'Never'}")
    print(f"Cache Size: {status['cache_size']}")
    print(f"Subscribers: {status['subscribers']}")

    print("\n--- Circuit Breaker ---")
    cb = status["circuit_breaker"]
    print(f"State: {cb['state']}")
    print(f"Failures: {cb['failure_count']}")

    print("\n--- Configuration ---")
    config = status["config"]
    print(f"Poll Interval: {config['poll_interval_seconds']}s")
    print(f"Cache TTL: {config['cache_ttl_seconds']}s")
    print(f"Source: {config['source']}")
    print()


def print_metrics(metrics: dict, hours: Optional[int] = None):
    """Pretty print metrics."""
    print("\n=== Mempool Watcher Metrics ===")
    print(f"(Last {hours} hours)\n" if hours else "(All history)\n")

    agg = metrics["aggregate"]
    print(f"Total Cycles: {agg['total_runs']}")
    print(f"Successful: {agg['successful_runs']}")
    print(f"Partial: {agg['partial_runs']}")
    print(f"Failed: {agg['failed_runs']}")
    print(f"Cancelled: {agg['cancelled_runs']}")
    print(f"Success Rate: {metrics['success_rate']:.1%}")
    print(f"\nPending Seen: {agg['total_pending_seen']}")
    print(f"Published: {agg['total_published']}")
    print(f"Already Sent: {agg['total_duplicates']}")
    print(f"Errors: {agg['total_errors']}")
    print(f"\nAvg Duration: {agg['avg_duration_seconds']:.2f}s")
    print(f"Avg List Latency: {agg['avg_list_latency_seconds']:.2f}s")
    print()


async def poll_command():
    """Run a single cycle with a throwaway subscriber and print what it saw."""
    watcher = MempoolWatcher()
    subscription = watcher.subscribe()
    try:
        result = await watcher.poll_once()
    finally:
        subscription.close()
        await watcher.source.close()

    print_result(result)
    async for item in subscription:
        print(item.model_dump_json(by_alias=True))
    return 1 if result["status"] == "failed" else 0


async def status_command():
    """Show watcher status."""
    watcher = MempoolWatcher()
    print_status(watcher.get_status())
    await watcher.source.close()
    return 0


async def metrics_command(hours: Optional[int] = None, cycles: int = 3):
    """Run a few cycles, then show metrics."""
    watcher = MempoolWatcher()
    subscription = watcher.subscribe()
    try:
        for _ in range(cycles):
            await watcher.poll_once()
            await asyncio.sleep(watcher.config.poll_interval_seconds)
    finally:
        subscription.close()
        await watcher.source.close()
    print_metrics(watcher.get_metrics(hours=hours), hours)
    return 0


async def run_command():
    """Watch the mempool continuously, printing each new transaction as JSON."""
    config = get_watcher_config()
    print(f"Watching {config.source_type} mempool", file=sys.stderr)
    print(f"Poll interval: {config.poll_interval_seconds}s", file=sys.stderr)
    print("Press Ctrl+C to stop\n", file=sys.stderr)

    watcher = MempoolWatcher(config=config)
    subscription = await watcher.run()
    try:
        async for item in subscription:
            print(item.model_dump_json(by_alias=True), flush=True)
    finally:
        await watcher.stop()
    return 0


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: mempool-watcher <command> [options]")
        print("\nCommands:")
        print("  poll              Run a single cycle and print new transactions")
        print("  status            Show watcher status and configuration")
        print("  metrics [hours]   Run a few cycles and show metrics")
        print("  run               Watch continuously, one JSON line per new tx")
        print("\nExamples:")
        print("  mempool-watcher poll")
        print("  SOURCE_TYPE=mock mempool-watcher run")
        return 1

    settings = get_settings()
    configure_logging(settings.ENV, debug=settings.DEBUG)
    command = sys.argv[1]

    try:
        if command == "poll":
            return asyncio.run(poll_command())
        elif command == "status":
            return asyncio.run(status_command())
        elif command == "metrics":
            hours = int(sys.argv[2]) if len(sys.argv) > 2 else None
            return asyncio.run(metrics_command(hours))
        elif command == "run":
            return asyncio.run(run_command())
        else:
            print(f"Unknown command: {command}")
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {str(e)}")
        logger.exception("cli_error", command=command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
