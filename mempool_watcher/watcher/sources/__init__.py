"""Pending-transaction source implementations."""

from mempool_watcher.watcher.sources.base import (
    BaseTransactionSource,
    MalformedBlobError,
    MalformedResponseError,
    SourceError,
    SourceUnreachableError,
)
from mempool_watcher.watcher.sources.mock_source import MockTransactionSource
from mempool_watcher.watcher.sources.terra import TerraTransactionSource

__all__ = [
    "BaseTransactionSource",
    "SourceError",
    "SourceUnreachableError",
    "MalformedBlobError",
    "MalformedResponseError",
    "MockTransactionSource",
    "TerraTransactionSource",
]
