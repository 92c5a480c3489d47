"""
Client exception hierarchy for the AR.IO library.

Maps the failure shapes of both evaluation backends (process messaging and
legacy contract replay) onto one taxonomy so callers can catch precisely
what they care about. Transient transport errors stay internal; only
exhaustion is surfaced.
"""

from __future__ import annotations
from typing import Optional, Any, Dict, Iterable


class ARIOError(Exception):
    """Base exception for all client errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    recoverable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Configuration Errors ====================


class InvalidConfigurationError(ARIOError):
    """Raised when a client or facade is constructed with bad or ambiguous configuration.

    Raised at construction time, never deferred to the first call.
    """
    pass


class InvalidTagsError(InvalidConfigurationError):
    """Raised when a message carries duplicate, empty or non-string tags."""

    def __init__(self, message: str, names: Iterable[str] = (), **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.names = tuple(names)


class SelectorConflictError(ARIOError):
    """Raised when more than one point-in-time selector field is set."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = tuple(fields)
        super().__init__(
            f"Only one evaluation selector may be set, got: {', '.join(self.fields)}",
            details={"fields": list(self.fields)},
        )


# ==================== Signing Errors ====================


class SigningError(ARIOError):
    """Raised when a credential cannot be loaded or fails to sign."""
    pass


# ==================== Process Messaging Errors ====================


class TransportError(ARIOError):
    """Raised by a transport for transient failures (network, timeout, 5xx).

    Retried internally by the process client and never surfaced on its own.
    """
    recoverable = True


class DeliveryError(ARIOError):
    """Raised when a message could not be delivered after exhausting retries."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class ResultTimeoutError(ARIOError):
    """Raised when the result of a sent message is not available after max polls.

    The message id is preserved so the caller can re-poll later instead of
    sending the message again.
    """
    recoverable = True

    def __init__(self, message_id: str, attempts: int, **kwargs: Any) -> None:
        super().__init__(
            f"Result for message {message_id} not available after {attempts} attempts",
            **kwargs,
        )
        self.message_id = message_id
        self.attempts = attempts


class ProcessError(ARIOError):
    """Raised when the process backend reports an evaluation error."""

    def __init__(
        self,
        message: str,
        process_id: Optional[str] = None,
        message_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.process_id = process_id
        self.message_id = message_id


class CancelledError(ARIOError):
    """Raised when the caller cancels a request or its timeout elapses.

    Cancelling only affects the waiting client; a message that was already
    transmitted is not withdrawn.
    """
    pass


# ==================== Legacy Contract Errors ====================


class CacheServiceError(ARIOError):
    """Raised internally when the cache service misses or returns garbage."""
    recoverable = True


class ReplayError(ARIOError):
    """Raised internally when local replay of the interaction log fails."""
    pass


class ContractError(ARIOError):
    """Raised by an interaction handler to reject an interaction during replay."""
    pass


class ContractUnavailableError(ARIOError):
    """Raised when neither the cache service nor local replay produced a state."""

    def __init__(
        self,
        contract_id: str,
        cache_error: Optional[BaseException] = None,
        replay_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            f"Contract {contract_id} unavailable: cache failed ({cache_error}); "
            f"replay failed ({replay_error})",
            details={"contract_id": contract_id},
        )
        self.contract_id = contract_id
        self.cache_error = cache_error
        self.replay_error = replay_error


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a transient, retryable failure."""
    if isinstance(exc, ARIOError):
        return exc.recoverable
    return isinstance(exc, (ConnectionError, TimeoutError))


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging and CLI output."""
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, ARIOError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, DeliveryError):
        context["attempts"] = exc.attempts
    if isinstance(exc, ResultTimeoutError):
        context["message_id"] = exc.message_id
        context["attempts"] = exc.attempts
    if isinstance(exc, ProcessError):
        if exc.process_id:
            context["process_id"] = exc.process_id
        if exc.message_id:
            context["message_id"] = exc.message_id

    return context
