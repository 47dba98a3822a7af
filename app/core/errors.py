"""
Error taxonomy for the batch lifecycle engine.

ProviderError and PersistenceError raised inside a phase drive the batch to
FAILED; StateError and BatchValidationError are rejected synchronously on the
request path; ProtocolError is logged and ignored by the subscriber channel.
"""

from __future__ import annotations


class BatchEngineError(Exception):
    """Base class for every error raised by the engine."""


class BatchValidationError(BatchEngineError):
    """Malformed or out-of-range batch request; the batch is never created."""


class ProviderError(BatchEngineError):
    """A generation call failed after exhausting its retry budget."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class MalformedResponseError(ProviderError):
    """Provider answered, but the payload did not have the expected shape."""


class IncompleteTitlesError(ProviderError):
    """Provider returned fewer titles than requested; the remainder is re-requested."""

    def __init__(self, received: int, remaining: int) -> None:
        super().__init__(f"Received {received} titles, {remaining} still missing")
        self.received = received
        self.remaining = remaining


class FailureStreakError(ProviderError):
    """Too many consecutive article failures; the provider looks systemically broken."""

    def __init__(self, streak: int) -> None:
        super().__init__(f"Too many consecutive failures ({streak} articles failed in a row)")
        self.streak = streak


class PersistenceError(BatchEngineError):
    """The record store is unavailable or rejected the write."""


class ProtocolError(BatchEngineError):
    """A subscriber sent a message that is not part of the channel protocol."""


class StateError(BatchEngineError):
    """A status transition or action is not allowed in the batch's current state."""


class BatchNotFoundError(BatchEngineError):
    """No batch with the requested id."""
