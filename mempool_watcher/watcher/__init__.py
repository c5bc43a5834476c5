"""
Mempool watching module.

This module polls a node's pending-transaction pool, deduplicates
transactions it already published, decodes the new ones and
broadcasts them to subscribers.
"""

from mempool_watcher.watcher.broadcast import Broadcaster, DeliveryError, Subscription
from mempool_watcher.watcher.cache import TTLCache
from mempool_watcher.watcher.models import MempoolItem, Transaction
from mempool_watcher.watcher.poller import MempoolWatcher
from mempool_watcher.watcher.sources.base import BaseTransactionSource
from mempool_watcher.watcher.sources.mock_source import MockTransactionSource
from mempool_watcher.watcher.sources.terra import TerraTransactionSource

__all__ = [
    "MempoolWatcher",
    "TTLCache",
    "Broadcaster",
    "Subscription",
    "DeliveryError",
    "MempoolItem",
    "Transaction",
    "BaseTransactionSource",
    "MockTransactionSource",
    "TerraTransactionSource",
]
