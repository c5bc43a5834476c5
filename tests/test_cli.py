"""Tests for the mempool-watcher command-line entry point."""

import json
import sys

import pytest

from mempool_watcher.watcher import cli
from mempool_watcher.watcher.sources.base import SourceUnreachableError
from mempool_watcher.watcher.sources.terra import compute_tx_hash


@pytest.fixture
def argv(monkeypatch):
    """Set the command line; logging setup is skipped so handlers are not rebound."""
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)

    def _set(*args: str):
        monkeypatch.setattr(sys, "argv", ["mempool-watcher", *args])

    return _set


def test_usage_without_command(argv, capsys):
    """Test running without a command prints usage and fails."""
    argv()

    assert cli.main() == 1
    out = capsys.readouterr().out
    assert "Usage: mempool-watcher <command>" in out
    assert "poll" in out


def test_unknown_command(argv, capsys):
    """Test an unknown command is reported and fails."""
    argv("bogus")

    assert cli.main() == 1
    assert "Unknown command: bogus" in capsys.readouterr().out


def test_poll_prints_new_transactions(argv, capsys, monkeypatch, make_watcher, blobs):
    """Test poll prints the cycle summary and one JSON line per new transaction."""
    monkeypatch.setattr(cli, "MempoolWatcher", lambda: make_watcher(blobs))
    argv("poll")

    assert cli.main() == 0

    out = capsys.readouterr().out
    assert "Status: success" in out
    assert "Published: 2 (0 undelivered)" in out
    items = [json.loads(line) for line in out.splitlines() if line.startswith("{")]
    assert {item["tx_hash"] for item in items} == {compute_tx_hash(b) for b in blobs}


def test_poll_exit_code_on_failed_cycle(argv, capsys, monkeypatch, make_watcher):
    """Test poll exits non-zero when the node cannot be listed."""
    watcher = make_watcher([])

    async def unreachable():
        raise SourceUnreachableError("node down")

    watcher.source.list_pending = unreachable
    monkeypatch.setattr(cli, "MempoolWatcher", lambda: watcher)
    argv("poll")

    assert cli.main() == 1
    assert "Error: node down" in capsys.readouterr().out


def test_poll_error_is_reported(argv, capsys, monkeypatch, make_watcher):
    """Test an exception escaping the cycle is reported instead of crashing."""
    watcher = make_watcher([])

    async def broken_poll():
        raise RuntimeError("boom")

    watcher.poll_once = broken_poll
    monkeypatch.setattr(cli, "MempoolWatcher", lambda: watcher)
    argv("poll")

    assert cli.main() == 1
    assert "Error: boom" in capsys.readouterr().out
