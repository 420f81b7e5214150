"""
Tiered delayed-publish scheduler.

``PublishScheduler`` durably records content owed to a tier at a future time
(``schedule_post``) and, on every tick, delivers whatever has come due
(``process_pending_posts``):

- SILVER (and any other messaging tier) goes out through the Telegram
  broadcaster.
- PUBLIC goes out through the X client, behind the shared rate-limit gate.

Every due post ends in exactly one terminal status (``posted`` / ``failed``)
or is deliberately left ``pending`` for a later tick (gate closed, quota
exhausted, post intentionally not sent).  A content-too-long rejection gets
exactly one shortened retry.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from signal_relay.exceptions import (
    ContentTooLongError,
    QuotaExceededError,
    ValidationError,
)
from signal_relay.scheduling.models import (
    PostStatus,
    ProcessReport,
    ScheduledPost,
    Tier,
)
from signal_relay.utils import generate_id, utc_now

logger = logging.getLogger(__name__)

# Outcomes of a single due post
_POSTED = "posted"
_FAILED = "failed"
_DEFERRED = "deferred"


class PublishScheduler:
    """Schedules and executes delayed, tier-specific delivery.

    Args:
        db: Store (``create_scheduled_post``, ``get_pending_scheduled_posts``,
            ``update_scheduled_post``, ``get_signal``, ``update_signal``).
        rate_limit_gate: Shared gate for the social channel.
        twitter: Social publisher exposing ``post_tweet(text)``.
        telegram: Messaging publisher exposing ``broadcast_to_tiers``, or
            ``None`` when no bot token is configured.
        content_generator: Exposes ``shorten(text, rejected=True)`` for the
            one-shot too-long remediation.
        silver_delay_minutes: Fixed SILVER delay.
        public_delay_range: Inclusive ``(min, max)`` PUBLIC delay in minutes.
        clock: Returns the current aware UTC time.
        rng: Random source for the PUBLIC delay (tests pass a seeded one).
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        rate_limit_gate: "RateLimitGate",  # noqa: F821
        twitter: "TwitterClient",  # noqa: F821
        telegram: Optional["TelegramBroadcaster"],  # noqa: F821
        content_generator: "SignalWriterAgent",  # noqa: F821
        silver_delay_minutes: int = 15,
        public_delay_range: Tuple[int, int] = (30, 60),
        clock: Callable[[], datetime] = utc_now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.db = db
        self.rate_limit_gate = rate_limit_gate
        self.twitter = twitter
        self.telegram = telegram
        self.content_generator = content_generator
        self.silver_delay_minutes = silver_delay_minutes
        self.public_delay_range = public_delay_range
        self._clock = clock
        self._rng = rng or random.Random()

    # ================================================================
    # SCHEDULING
    # ================================================================

    def delay_for(self, tier: Tier) -> int:
        """Default delay in minutes for *tier*.  PUBLIC is re-rolled per call."""
        if tier is Tier.SILVER:
            return self.silver_delay_minutes
        if tier is Tier.PUBLIC:
            low, high = self.public_delay_range
            return self._rng.randint(low, high)
        return 0

    async def schedule_post(
        self,
        signal_id: str,
        tier: Any,
        content: str,
        delay_override: Optional[int] = None,
    ) -> ScheduledPost:
        """Persist a ``pending`` post for *tier* due after the tier's delay.

        Args:
            signal_id: Signal the content belongs to.
            tier: Target tier (``Tier`` or its name in any case).
            content: Text to deliver.
            delay_override: Delay in minutes replacing the tier default.

        Returns:
            The persisted ``ScheduledPost``.

        Raises:
            ValidationError: On an empty signal ID or content, an unknown
                tier, or a negative override.
            DatabaseError: If the store does not confirm the insert.
        """
        if not signal_id:
            raise ValidationError("signal_id cannot be empty")
        if not content or not content.strip():
            raise ValidationError("content cannot be empty")
        tier = Tier.parse(tier)

        if delay_override is not None:
            if delay_override < 0:
                raise ValidationError(
                    f"delay_override must be >= 0, got {delay_override}"
                )
            delay = delay_override
        else:
            delay = self.delay_for(tier)

        now = self._clock()
        post = ScheduledPost(
            id=generate_id(),
            signal_id=signal_id,
            tier=tier,
            content=content,
            scheduled_for=now + timedelta(minutes=delay),
            created_at=now,
        )
        row = await self.db.create_scheduled_post(post.to_row())

        logger.info(
            "[SCHEDULER] Scheduled %s post for signal %s at %s (+%d min)",
            tier.value,
            signal_id,
            post.scheduled_for.isoformat(),
            delay,
        )
        return ScheduledPost.from_row(row)

    # ================================================================
    # PROCESSING
    # ================================================================

    async def tick(self) -> ProcessReport:
        """One scheduler pass with a top-level catch.

        Never raises: a failure outside the per-post handling (e.g. the
        store query itself) is logged and returned in the report.
        """
        try:
            return await self.process_pending_posts()
        except Exception as exc:
            logger.exception("[SCHEDULER] Scheduler tick failed")
            return ProcessReport(errors=[f"tick: {exc}"])

    async def process_pending_posts(self) -> ProcessReport:
        """Deliver every pending post whose ``scheduled_for`` has passed.

        Posts are handled sequentially in ascending ``scheduled_for`` order.
        A failure on one post is logged and recorded; it never stops the
        batch.

        Raises:
            DatabaseError: If the due posts cannot be loaded.
        """
        now = self._clock()
        rows = await self.db.get_pending_scheduled_posts(now)
        report = ProcessReport(due=len(rows))

        if not rows:
            return report

        logger.info("[SCHEDULER] Found %d posts due for delivery", len(rows))

        for row in rows:
            post_id = row.get("id", "?")
            try:
                post = ScheduledPost.from_row(row)
                outcome = await self._process_post(post, report)
            except Exception as exc:
                logger.exception("[SCHEDULER] Error processing post %s", post_id)
                report.errors.append(f"{post_id}: {exc}")
                continue

            if outcome == _POSTED:
                report.posted += 1
            elif outcome == _FAILED:
                report.failed += 1
            else:
                report.deferred += 1

        logger.info(
            "[SCHEDULER] Pass done: due=%d posted=%d failed=%d deferred=%d",
            report.due,
            report.posted,
            report.failed,
            report.deferred,
        )
        return report

    async def _process_post(self, post: ScheduledPost, report: ProcessReport) -> str:
        if post.tier is Tier.PUBLIC:
            return await self._publish_public(post, report)
        return await self._deliver_messaging(post)

    async def _deliver_messaging(self, post: ScheduledPost) -> str:
        """Messaging tiers: best-effort fan-out, then ``posted``."""
        if self.telegram is None:
            logger.warning(
                "[SCHEDULER] No messaging channel configured, leaving %s post %s pending",
                post.tier.value,
                post.id,
            )
            return _DEFERRED

        try:
            await self.telegram.broadcast_to_tiers(post.content, [post.tier])
        except Exception as exc:
            await self._mark_failed(post, str(exc))
            return _FAILED

        await self._mark_posted(post)
        return _POSTED

    async def _publish_public(self, post: ScheduledPost, report: ProcessReport) -> str:
        """PUBLIC tier: gate, post, and the one-shot shorten remediation."""
        decision = await self.rate_limit_gate.can_post()
        if not decision.allowed:
            logger.info(
                "[SCHEDULER] Post %s deferred: %s (%s min)",
                post.id,
                decision.reason,
                decision.wait_minutes,
            )
            return _DEFERRED

        try:
            tweet_id = await self.twitter.post_tweet(post.content)
        except QuotaExceededError as exc:
            logger.warning("[SCHEDULER] Post %s deferred, quota exhausted: %s", post.id, exc)
            return _DEFERRED
        except ContentTooLongError as exc:
            logger.info("[SCHEDULER] Post %s too long (%s), shortening once", post.id, exc)
            return await self._publish_shortened(post, report)
        except Exception as exc:
            await self._mark_failed(post, str(exc))
            return _FAILED

        if tweet_id is None:
            return _DEFERRED

        await self._mark_posted(post, tweet_id=tweet_id)
        await self._record_public_post(post, report)
        return _POSTED

    async def _publish_shortened(self, post: ScheduledPost, report: ProcessReport) -> str:
        try:
            shortened = await self.content_generator.shorten(post.content, rejected=True)
            tweet_id = await self.twitter.post_tweet(shortened)
        except Exception as exc:
            await self._mark_failed(post, f"shortened retry failed: {exc}")
            return _FAILED

        if tweet_id is None:
            return _DEFERRED

        post.content = shortened
        await self._mark_posted(post, tweet_id=tweet_id, content=shortened)
        await self._record_public_post(post, report)
        return _POSTED

    # ================================================================
    # STATUS UPDATES
    # ================================================================

    async def _mark_posted(
        self,
        post: ScheduledPost,
        tweet_id: Optional[str] = None,
        content: Optional[str] = None,
    ) -> None:
        now = self._clock()
        update: Dict[str, Any] = {
            "id": post.id,
            "status": PostStatus.POSTED.value,
            "posted_at": now.isoformat(),
        }
        if tweet_id is not None:
            update["tweet_id"] = tweet_id
        if content is not None:
            update["content"] = content

        await self.db.update_scheduled_post(update)
        post.status = PostStatus.POSTED
        post.posted_at = now
        post.tweet_id = tweet_id

        logger.info(
            "[SCHEDULER] Delivered %s post %s%s",
            post.tier.value,
            post.id,
            f" (tweet_id={tweet_id})" if tweet_id else "",
        )

    async def _mark_failed(self, post: ScheduledPost, error: str) -> None:
        await self.db.update_scheduled_post({
            "id": post.id,
            "status": PostStatus.FAILED.value,
            "error_message": error,
        })
        post.status = PostStatus.FAILED
        post.error_message = error

        logger.error("[SCHEDULER] Post %s failed: %s", post.id, error)

    async def _record_public_post(self, post: ScheduledPost, report: ProcessReport) -> None:
        """Stamp the signal's ``public_posted_at`` the first time it goes public."""
        try:
            row = await self.db.get_signal(post.signal_id)
            if row is None or row.get("public_posted_at"):
                return
            await self.db.update_signal({
                "id": post.signal_id,
                "public_posted_at": (post.posted_at or self._clock()).isoformat(),
            })
        except Exception as exc:
            logger.exception(
                "[SCHEDULER] Could not stamp public_posted_at on signal %s",
                post.signal_id,
            )
            report.errors.append(f"{post.id}: public_posted_at: {exc}")


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PublishScheduler",
]
