"""
Base transaction source interface.

Defines the contract every mempool source must implement, and the
errors the watcher uses to decide whether to drop an item or a cycle.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from mempool_watcher.watcher.models import Transaction


class BaseTransactionSource(ABC):
    """
    Abstract base class for pending-transaction sources.

    A source is stateless I/O: it lists raw pending blobs, derives the
    canonical hash of a blob and decodes a blob. The same instance is shared
    by every concurrent call the watcher makes.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        lcd_url: Optional[str] = None,
        timeout: float = 10.0,
    ):
        """
        Initialize the source.

        Args:
            rpc_url: Base URL of the node RPC endpoint
            lcd_url: Base URL of the LCD endpoint
            timeout: Request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.lcd_url = lcd_url
        self.timeout = timeout

    @abstractmethod
    async def list_pending(self) -> List[str]:
        """
        List the raw (base64) transactions currently in the mempool.

        Raises:
            SourceUnreachableError: On transport failure or a malformed response
        """
        pass

    @abstractmethod
    async def identifier_of(self, blob: str) -> str:
        """
        Compute the canonical identifier of a raw transaction.

        Returns:
            Uppercase hex transaction hash

        Raises:
            MalformedBlobError: If the blob is not valid base64
        """
        pass

    @abstractmethod
    async def decode(self, blob: str) -> Transaction:
        """
        Decode a raw transaction into its structured form.

        Raises:
            SourceUnreachableError: If the decoder can't be reached
            MalformedResponseError: If the decoder answered with an unexpected shape
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """
        Get the name of this transaction source.

        Returns:
            Source identifier (e.g., 'terra', 'mock')
        """
        pass

    async def close(self) -> None:
        """Release any connection held by the source."""
        return None


class SourceError(Exception):
    """Base exception for transaction source errors."""

    pass


class SourceUnreachableError(SourceError):
    """Raised when the node can't be reached or answers unusably."""

    pass


class MalformedBlobError(SourceError):
    """Raised when a raw transaction can't be decoded from its wire encoding."""

    pass


class MalformedResponseError(SourceError):
    """Raised when the node returns data that doesn't parse into the expected shape."""

    pass
