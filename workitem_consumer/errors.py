"""Error types raised by the consumer."""
from typing import Optional


class ConsumerError(Exception):
    """Base class for consumer errors."""


class TransportError(ConsumerError):
    """A call to the broker failed (connect, sign-in, pop, update)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProcessingError(ConsumerError):
    """Domain logic failed; the workitem should be retried."""
