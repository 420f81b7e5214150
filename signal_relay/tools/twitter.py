"""
Async X/Twitter API v2 client for publishing PUBLIC-tier posts.

Uses ``httpx`` to call ``POST /2/tweets`` with an OAuth 2.0 user-context
access token.  Every response's dual-window quota headers are folded into the
shared :class:`~signal_relay.scheduling.rate_limit_gate.RateLimitGate`.

Failures are classified into the publish exception taxonomy:

- timeouts, connection errors and 5xx -> ``TransientNetworkError`` (retried)
- 429 -> ``QuotaExceededError`` (gate marked limited, never retried)
- 401 -> ``AuthError`` (never retried)
- "too long" rejections -> ``ContentTooLongError`` (caller shortens once)
- anything else -> ``PublishError``

``post_tweet`` returns ``None`` when the post was intentionally not sent
(no credentials, gate closed, or too soon after the previous post).
"""

import asyncio
import logging
import os
import random
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from signal_relay.exceptions import (
    AuthError,
    ContentTooLongError,
    PublishError,
    QuotaExceededError,
    TransientNetworkError,
)
from signal_relay.scheduling.rate_limit_gate import (
    RateLimitGate,
    parse_rate_limit_headers,
)
from signal_relay.utils import retry, tweet_length, utc_now

logger = logging.getLogger(__name__)

_TOO_LONG_RE = re.compile(
    r"too long|tweet length|exceeds? (the )?(maximum|character|length)",
    re.IGNORECASE,
)


def is_retryable(error: BaseException) -> bool:
    """Retry predicate: only transient network failures are worth another try."""
    return isinstance(error, TransientNetworkError)


class TwitterClient:
    """Async X API v2 publisher (the social channel).

    Args:
        rate_limit_gate: Shared gate updated from every response.
        access_token: OAuth 2.0 user access token.  Falls back to the
            ``TWITTER_ACCESS_TOKEN`` environment variable.
        max_length: Channel length limit enforced before calling the API.
        min_seconds_between_posts: Self-imposed spacing between posts.
        pre_send_jitter: ``(low, high)`` seconds of random delay before
            each send.
        retries: Retries for transient failures.
        retry_delay: Initial retry delay in seconds (doubled each retry).
        transport: Optional ``httpx`` transport (tests use
            ``httpx.MockTransport``).
        clock: Returns the current aware UTC time.

    Usage::

        client = TwitterClient(gate)
        tweet_id = await client.post_tweet("$SOL long triggered ...")
    """

    BASE_URL: str = "https://api.twitter.com/2"

    def __init__(
        self,
        rate_limit_gate: RateLimitGate,
        access_token: Optional[str] = None,
        max_length: int = 280,
        min_seconds_between_posts: int = 120,
        pre_send_jitter: Tuple[float, float] = (5.0, 30.0),
        retries: int = 2,
        retry_delay: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.rate_limit_gate = rate_limit_gate
        self.access_token: str = access_token or os.environ.get(
            "TWITTER_ACCESS_TOKEN", ""
        )
        self.max_length = max_length
        self.min_seconds_between_posts = min_seconds_between_posts
        self.pre_send_jitter = pre_send_jitter
        self.retries = retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._clock = clock
        self._last_posted_at: Optional[datetime] = None

        if not self.access_token:
            logger.warning(
                "[TWITTER] TWITTER_ACCESS_TOKEN missing. PUBLIC posts will not be sent."
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _too_soon(self) -> bool:
        if self._last_posted_at is None:
            return False
        earliest = self._last_posted_at + timedelta(
            seconds=self.min_seconds_between_posts
        )
        return self._clock() < earliest

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def post_tweet(self, text: str) -> Optional[str]:
        """Publish *text* and return the new tweet ID.

        Returns:
            Tweet ID on success; ``None`` if the post was intentionally not
            sent.

        Raises:
            ContentTooLongError: If *text* exceeds the limit (checked locally
                before any API call) or the API rejects it as too long.
            QuotaExceededError: On a 429 response.
            AuthError: On a 401 response.
            TransientNetworkError: If transient failures outlast the retries.
            PublishError: On any other rejection.
        """
        if not self.access_token:
            logger.warning("[TWITTER] Skipping tweet: no access token")
            return None

        length = tweet_length(text)
        if length > self.max_length:
            raise ContentTooLongError(
                f"Tweet is {length} weighted characters, limit is {self.max_length}",
                length=length,
                limit=self.max_length,
            )

        decision = await self.rate_limit_gate.can_post()
        if not decision.allowed:
            logger.info(
                "[TWITTER] Not posting: %s (resume in %s min)",
                decision.reason,
                decision.wait_minutes,
            )
            return None

        if self._too_soon():
            logger.info(
                "[TWITTER] Not posting: last post was less than %ds ago",
                self.min_seconds_between_posts,
            )
            return None

        low, high = self.pre_send_jitter
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

        tweet_id = await retry(
            lambda: self._create_tweet(text),
            retries=self.retries,
            initial_delay=self.retry_delay,
            backoff_factor=2.0,
            should_retry=is_retryable,
            operation_name="post_tweet",
        )
        self._last_posted_at = self._clock()

        logger.info("[TWITTER] Tweet posted (id=%s, chars=%d)", tweet_id, len(text))
        return tweet_id

    async def _create_tweet(self, text: str) -> str:
        """Single ``POST /2/tweets`` attempt with failure classification."""
        try:
            async with httpx.AsyncClient(
                timeout=30.0, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.BASE_URL}/tweets",
                    headers=self._auth_headers(),
                    json={"text": text},
                )
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Tweet request failed: {exc}") from exc

        quota = parse_rate_limit_headers(response.headers)
        await self.rate_limit_gate.update_from_headers(**quota)

        if response.status_code in (200, 201):
            data = response.json().get("data", {})
            tweet_id = data.get("id")
            if not tweet_id:
                raise PublishError("Tweet created but response carried no id")
            return str(tweet_id)

        detail = _error_detail(response)

        if response.status_code == 429:
            await self.rate_limit_gate.mark_rate_limited(
                quota["reset_user"], quota["reset_app"]
            )
            raise QuotaExceededError(
                f"X API quota exhausted: {detail}",
                user_reset=quota["reset_user"],
                app_reset=quota["reset_app"],
            )
        if response.status_code == 401:
            raise AuthError(f"X API rejected credentials: {detail}")
        if _TOO_LONG_RE.search(detail):
            raise ContentTooLongError(
                f"X API rejected tweet as too long: {detail}",
                length=tweet_length(text),
                limit=self.max_length,
            )
        if response.status_code >= 500:
            raise TransientNetworkError(
                f"X API server error {response.status_code}: {detail}"
            )
        raise PublishError(f"X API error {response.status_code}: {detail}")


def _error_detail(response: httpx.Response) -> str:
    """Best-effort human-readable error text from an X API error body."""
    try:
        body: Any = response.json()
    except ValueError:
        return response.text[:500]

    if isinstance(body, dict):
        parts = [
            str(body.get(key))
            for key in ("title", "detail", "message")
            if body.get(key)
        ]
        for err in body.get("errors") or []:
            if isinstance(err, dict) and err.get("message"):
                parts.append(str(err["message"]))
        if parts:
            return "; ".join(parts)
    return str(body)[:500]


__all__ = [
    "TwitterClient",
    "is_retryable",
]
