"""
Custom exception classes for the Signal Relay system.

This module defines all exception classes used throughout the codebase.
Exceptions follow the fail-fast philosophy: surface errors immediately with
clear context, and let each caller decide whether the failure is per-item
(log and continue) or fatal.

Hierarchy:
    Exception
    +-- SignalRelayError (base for all relay-specific errors)
    |   +-- PublishError
    |   |   +-- TransientNetworkError
    |   |   +-- AuthError
    |   |   +-- QuotaExceededError
    |   |   +-- ContentTooLongError
    |   +-- ContentGenerationError
    |   +-- PriceFetchError
    |   +-- InvalidTransitionError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from datetime import datetime
from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class SignalRelayError(Exception):
    """Base exception for all relay-specific errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails (malformed signal or row data)."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# PUBLISHING EXCEPTIONS
# =============================================================================


class PublishError(SignalRelayError):
    """Raised when a publish channel rejects a post for a non-specific reason."""

    pass


class TransientNetworkError(PublishError):
    """Raised for timeouts, connection resets and 5xx responses.

    The only publish failure that is eligible for automatic retry.
    """

    pass


class AuthError(PublishError):
    """Raised when the channel rejects our credentials. Never retried."""

    pass


class QuotaExceededError(PublishError):
    """Raised when the channel reports an exhausted quota window.

    Never retried locally: only the passage of time clears it, so callers
    treat it as "try later" rather than as a failure.

    Attributes:
        user_reset: When the per-user window resets, if reported.
        app_reset: When the per-app window resets, if reported.
    """

    def __init__(
        self,
        message: str,
        user_reset: Optional[datetime] = None,
        app_reset: Optional[datetime] = None,
    ):
        self.user_reset = user_reset
        self.app_reset = app_reset
        super().__init__(message)


class ContentTooLongError(PublishError):
    """Raised when the channel rejects content for exceeding its length limit.

    Attributes:
        length: Length of the rejected text, when known.
        limit: The channel limit, when known.
    """

    def __init__(
        self,
        message: str,
        length: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        self.length = length
        self.limit = limit
        super().__init__(message)


# =============================================================================
# LIFECYCLE EXCEPTIONS
# =============================================================================


class ContentGenerationError(SignalRelayError):
    """Raised when the content generator cannot produce publishable text."""

    pass


class PriceFetchError(SignalRelayError):
    """Raised when the pricing oracle fails to answer."""

    pass


class InvalidTransitionError(SignalRelayError):
    """Raised when a signal status change is not an edge of the state machine.

    Attributes:
        signal_id: ID of the signal that was being transitioned.
        from_status: Current status value.
        to_status: Requested status value.
    """

    def __init__(self, signal_id: str, from_status: str, to_status: str):
        self.signal_id = signal_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Signal {signal_id}: transition {from_status} -> {to_status} "
            "is not allowed"
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "SignalRelayError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Publishing
    "PublishError",
    "TransientNetworkError",
    "AuthError",
    "QuotaExceededError",
    "ContentTooLongError",
    # Lifecycle
    "ContentGenerationError",
    "PriceFetchError",
    "InvalidTransitionError",
]
