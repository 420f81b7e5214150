"""
Scheduling data models: Tier, PostStatus, ScheduledPost, RateLimitState.

Defines the core data structures used by the delivery subsystem:
- ``Tier``: Subscription level gating delivery timing.
- ``PostStatus``: Lifecycle status of a scheduled post.
- ``ScheduledPost``: One deferred delivery obligation.
- ``RateLimitState``: Persisted dual-window quota state of a social channel.
- ``GateDecision``: Answer of the rate-limit gate to "can we post now?".
- ``ProcessReport``: Observable outcome of one scheduler pass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from signal_relay.exceptions import ValidationError
from signal_relay.utils import parse_timestamp, utc_now


# =============================================================================
# TIER
# =============================================================================


class Tier(Enum):
    """Subscription tier.

    GOLD and DIAMOND receive signals instantly, SILVER after a fixed delay,
    PUBLIC (the social channel) after a randomized delay.
    """

    SILVER = "SILVER"
    GOLD = "GOLD"
    DIAMOND = "DIAMOND"
    PUBLIC = "PUBLIC"

    @property
    def is_instant(self) -> bool:
        """Tiers delivered at trigger time rather than through the scheduler."""
        return self in {Tier.GOLD, Tier.DIAMOND}

    @classmethod
    def parse(cls, value: Any) -> "Tier":
        """Parse a tier from a row value, accepting any letter case."""
        if isinstance(value, Tier):
            return value
        try:
            return cls(str(value).upper())
        except ValueError as exc:
            raise ValidationError(f"Unknown tier: {value!r}") from exc


# =============================================================================
# POST STATUS ENUM
# =============================================================================


class PostStatus(Enum):
    """Lifecycle status of a scheduled post.

    Transitions:
        PENDING -> POSTED
                -> FAILED
    """

    PENDING = "pending"
    POSTED = "posted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions allowed)."""
        return self in {PostStatus.POSTED, PostStatus.FAILED}


# =============================================================================
# SCHEDULED POST
# =============================================================================


@dataclass
class ScheduledPost:
    """A piece of content owed to one tier at a future time.

    Attributes:
        id: Unique identifier (UUID).
        signal_id: Signal that produced this post.
        tier: Recipient tier.
        content: Text to deliver.  Replaced at most once, by its shortened
            variant, before the post reaches a terminal status.
        scheduled_for: Earliest delivery time (timezone-aware UTC).
        status: Current lifecycle status.
        posted_at: Actual delivery timestamp.
        tweet_id: Social channel identifier for PUBLIC posts.
        error_message: Error message if delivery failed.
        created_at: When this record was created.
    """

    # Required fields
    id: str
    signal_id: str
    tier: Tier
    content: str
    scheduled_for: datetime

    # Status tracking
    status: PostStatus = PostStatus.PENDING
    posted_at: Optional[datetime] = None
    tweet_id: Optional[str] = None
    error_message: Optional[str] = None

    # Metadata
    created_at: datetime = field(default_factory=utc_now)

    def to_row(self) -> Dict[str, Any]:
        """Serialize for insertion into the ``scheduled_posts`` table."""
        return {
            "id": self.id,
            "signal_id": self.signal_id,
            "tier": self.tier.value,
            "content": self.content,
            "scheduled_for": self.scheduled_for.isoformat(),
            "status": self.status.value,
            "posted_at": self.posted_at.isoformat() if self.posted_at else None,
            "tweet_id": self.tweet_id,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ScheduledPost":
        """Build a ``ScheduledPost`` from a ``scheduled_posts`` row dict.

        Raises:
            ValidationError: If required columns are missing or malformed.
        """
        try:
            scheduled_for = parse_timestamp(row["scheduled_for"])
            post_id = row["id"]
            signal_id = row["signal_id"]
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Malformed scheduled post row: {exc}") from exc
        if scheduled_for is None:
            raise ValidationError(f"Scheduled post {post_id} has no scheduled_for")

        return cls(
            id=post_id,
            signal_id=signal_id,
            tier=Tier.parse(row.get("tier")),
            content=row.get("content") or "",
            scheduled_for=scheduled_for,
            status=PostStatus(row.get("status", "pending")),
            posted_at=parse_timestamp(row.get("posted_at")),
            tweet_id=row.get("tweet_id"),
            error_message=row.get("error_message"),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
        )


# =============================================================================
# RATE LIMIT STATE
# =============================================================================


@dataclass
class RateLimitState:
    """Persisted quota state for one social channel (singleton row).

    Attributes:
        service: Channel name, the row key (e.g. ``"twitter"``).
        user_limit_reset: When the per-user 24h window resets.
        app_limit_reset: When the per-app 24h window resets.
        is_rate_limited: Whether posting is currently blocked.
        last_updated: Last time the row was written.
    """

    service: str
    user_limit_reset: Optional[datetime] = None
    app_limit_reset: Optional[datetime] = None
    is_rate_limited: bool = False
    last_updated: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        """Serialize for an upsert keyed on ``service``."""
        return {
            "service": self.service,
            "user_limit_reset": (
                self.user_limit_reset.isoformat() if self.user_limit_reset else None
            ),
            "app_limit_reset": (
                self.app_limit_reset.isoformat() if self.app_limit_reset else None
            ),
            "is_rate_limited": self.is_rate_limited,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RateLimitState":
        """Build from a ``rate_limit_state`` row dict."""
        return cls(
            service=row["service"],
            user_limit_reset=parse_timestamp(row.get("user_limit_reset")),
            app_limit_reset=parse_timestamp(row.get("app_limit_reset")),
            is_rate_limited=bool(row.get("is_rate_limited", False)),
            last_updated=parse_timestamp(row.get("last_updated")),
        )


@dataclass
class GateDecision:
    """Answer of :class:`~signal_relay.scheduling.rate_limit_gate.RateLimitGate`.

    Attributes:
        allowed: Whether a post may be attempted now.
        reason: Human-readable reason when denied.
        resume_at: When posting may resume (denied decisions only).
        wait_minutes: Rounded minutes until ``resume_at``.
    """

    allowed: bool
    reason: Optional[str] = None
    resume_at: Optional[datetime] = None
    wait_minutes: Optional[int] = None


# =============================================================================
# PROCESS REPORT
# =============================================================================


@dataclass
class ProcessReport:
    """Outcome of one :meth:`PublishScheduler.process_pending_posts` pass."""

    due: int = 0
    posted: int = 0
    failed: int = 0
    deferred: int = 0
    errors: List[str] = field(default_factory=list)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Tier",
    "PostStatus",
    "ScheduledPost",
    "RateLimitState",
    "GateDecision",
    "ProcessReport",
]
