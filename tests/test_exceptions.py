"""Tests for the signal_relay.exceptions hierarchy."""

from datetime import datetime, timezone

import pytest

from signal_relay.exceptions import (
    AuthError,
    ConfigurationError,
    ContentGenerationError,
    ContentTooLongError,
    DatabaseError,
    InvalidTransitionError,
    PriceFetchError,
    PublishError,
    QuotaExceededError,
    RetryExhaustedError,
    SignalRelayError,
    TransientNetworkError,
    ValidationError,
)


@pytest.mark.parametrize(
    "exc_class",
    [TransientNetworkError, AuthError, QuotaExceededError, ContentTooLongError],
)
def test_publish_errors_share_base(exc_class):
    assert issubclass(exc_class, PublishError)
    assert issubclass(exc_class, SignalRelayError)


@pytest.mark.parametrize(
    "exc_class", [ContentGenerationError, PriceFetchError, InvalidTransitionError]
)
def test_lifecycle_errors_are_relay_errors(exc_class):
    assert issubclass(exc_class, SignalRelayError)


def test_validation_error_is_value_error():
    assert issubclass(ValidationError, ValueError)


@pytest.mark.parametrize("exc_class", [DatabaseError, ConfigurationError])
def test_core_errors_are_plain_exceptions(exc_class):
    assert not issubclass(exc_class, SignalRelayError)


def test_quota_exceeded_carries_resets():
    reset = datetime(2025, 6, 15, 13, tzinfo=timezone.utc)
    err = QuotaExceededError("429", user_reset=reset)
    assert err.user_reset == reset
    assert err.app_reset is None
    assert str(err) == "429"


def test_content_too_long_carries_lengths():
    err = ContentTooLongError("too long", length=300, limit=280)
    assert (err.length, err.limit) == (300, 280)


def test_invalid_transition_message():
    err = InvalidTransitionError("sig-1", "tp_hit", "active")
    assert err.signal_id == "sig-1"
    assert "tp_hit -> active" in str(err)


def test_retry_exhausted_keeps_last_error():
    cause = TimeoutError("slow")
    err = RetryExhaustedError("get_price", 3, cause)
    assert err.last_error is cause
    assert "3 attempts" in str(err)
