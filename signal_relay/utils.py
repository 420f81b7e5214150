"""
Shared utility functions used throughout the Signal Relay codebase.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator (for database primary keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): Parse an ISO string / datetime / None from a row
    - retry(): Bounded retry loop with backoff and a retry predicate
    - @with_retry: Decorator built on ``retry()`` for async client methods
    - clean_signal_text(): Strip stray line-continuation backslashes
    - tweet_length(): Weighted length the way X counts it (URLs, emoji)
"""

from datetime import datetime, timezone
import uuid
import asyncio
import logging
import re
import unicodedata
from functools import wraps
from typing import (
    Any,
    Awaitable,
    Callable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from signal_relay.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type variable for generic return types in the retry helpers
# ---------------------------------------------------------------------------
T = TypeVar("T")


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    for Supabase compatibility (TIMESTAMPTZ columns).

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """
    Generate a unique ID for database records.

    Returns:
        A unique UUID4 string (compatible with Supabase UUID type).
    """
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a timestamp column value into an aware UTC datetime.

    Supabase returns TIMESTAMPTZ columns as ISO-8601 strings, sometimes
    with a trailing ``Z``.

    Args:
        value: ISO string, datetime, or ``None``.

    Returns:
        Timezone-aware UTC datetime, or ``None`` for empty values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def from_epoch_seconds(value: Union[int, float, str, None]) -> Optional[datetime]:
    """Convert a Unix epoch (seconds) into an aware UTC datetime.

    Returns ``None`` for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


# ===========================================================================
# RETRY WITH BACKOFF
# Retries are for transient failures only: quota and auth rejections are
# excluded through the should_retry predicate.
# ===========================================================================


async def retry(
    action: Callable[[], Awaitable[T]],
    retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    operation_name: str = "operation",
) -> T:
    """
    Run *action*, retrying failures with multiplicative backoff.

    On failure the original exception is re-raised immediately when no
    retries remain or when ``should_retry(error)`` returns ``False``.
    Otherwise the loop sleeps ``delay`` seconds, decrements the remaining
    retries and multiplies the delay by ``backoff_factor``.

    Args:
        action: Zero-argument coroutine function to execute.
        retries: Number of retries after the first attempt (``0`` means a
            single attempt).
        initial_delay: Seconds to wait before the first retry.
        backoff_factor: Multiplier applied to the delay after each failure.
        should_retry: Optional predicate deciding whether an error is worth
            another attempt.  ``None`` retries every ``Exception``.
        operation_name: Label used in log messages.

    Returns:
        Whatever *action* returns on its first successful attempt.

    Raises:
        Exception: The last error raised by *action*, unchanged.
    """
    remaining = retries
    delay = initial_delay

    while True:
        try:
            return await action()
        except Exception as exc:
            if remaining <= 0 or (should_retry is not None and not should_retry(exc)):
                raise
            logger.warning(
                "[RETRY] %s failed: %s. Retrying in %.1fs (%d retries left)...",
                operation_name,
                exc,
                delay,
                remaining,
            )
            await asyncio.sleep(delay)
            remaining -= 1
            delay *= backoff_factor


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for async client methods: retry with exponential backoff.

    Built on :func:`retry`.  Non-retryable exceptions propagate immediately;
    once every attempt has failed on a retryable exception the error is
    wrapped in :class:`RetryExhaustedError` (original chained as
    ``__cause__`` and kept as ``last_error``).

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Delay before the first retry, doubled on each failure.
        retryable_exceptions: Exception types that trigger a retry.
        operation_name: Name used in log messages.  Defaults to the wrapped
            function's ``__name__``.

    Usage::

        @with_retry(max_attempts=3, retryable_exceptions=(httpx.HTTPError,))
        async def get_price(self, coin_id: str) -> Optional[float]:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await retry(
                    lambda: func(*args, **kwargs),
                    retries=max_attempts - 1,
                    initial_delay=base_delay,
                    backoff_factor=2.0,
                    should_retry=lambda exc: isinstance(exc, retryable_exceptions),
                    operation_name=op_name,
                )
            except retryable_exceptions as exc:
                logger.error(
                    "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                    op_name,
                    max_attempts,
                    exc,
                )
                raise RetryExhaustedError(op_name, max_attempts, exc) from exc

        return wrapper

    return decorator


# ===========================================================================
# TEXT UTILITIES
# ===========================================================================

_TRAILING_BACKSLASH_RE = re.compile(r"\\(\s*\n|\s*$)")
_LINE_END_BACKSLASH_RE = re.compile(r"\\$", re.MULTILINE)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


def clean_signal_text(text: str) -> str:
    """
    Remove errant backslashes that LLM output sometimes uses as line
    separators (``"entry: $0.046\\"`` -> ``"entry: $0.046"``).

    Args:
        text: Raw generated text.

    Returns:
        Cleaned text with trailing whitespace stripped from every line.
    """
    if not text:
        return text

    cleaned = _TRAILING_BACKSLASH_RE.sub("\n", text)
    cleaned = _LINE_END_BACKSLASH_RE.sub("", cleaned)
    cleaned = cleaned.replace("\\\\", "")
    cleaned = _EXCESS_NEWLINES_RE.sub("\n\n", cleaned)
    cleaned = "\n".join(line.rstrip() for line in cleaned.split("\n"))
    return cleaned.strip()


# X counts most Latin, punctuation and general-purpose ranges as one
# character; everything else (CJK, emoji, ...) counts as two.
_LIGHT_CODEPOINT_RANGES: Tuple[Tuple[int, int], ...] = (
    (0x0000, 0x10FF),
    (0x2000, 0x200D),
    (0x2010, 0x201F),
    (0x2032, 0x2037),
)
TWEET_URL_LENGTH = 23
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)


def _char_weight(char: str) -> int:
    codepoint = ord(char)
    for low, high in _LIGHT_CODEPOINT_RANGES:
        if low <= codepoint <= high:
            return 1
    return 2


def tweet_length(text: str) -> int:
    """
    Length of *text* as X counts it against the 280 limit.

    Every URL counts as ``TWEET_URL_LENGTH`` and code points outside the
    light ranges (emoji, CJK) count double.  Multi-code-point emoji are
    counted per code point, which can only over-estimate.
    """
    if not text:
        return 0

    text = unicodedata.normalize("NFC", text)
    length = 0
    position = 0
    for match in _URL_RE.finditer(text):
        length += sum(_char_weight(c) for c in text[position:match.start()])
        length += TWEET_URL_LENGTH
        position = match.end()
    length += sum(_char_weight(c) for c in text[position:])
    return length
