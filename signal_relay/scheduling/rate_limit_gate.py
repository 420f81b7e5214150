"""
Persistent dual-window rate-limit gate for the social channel.

The X API enforces two independent 24-hour quotas: one per user and one per
app.  ``RateLimitGate`` records both reset times, decides whether a post may
be attempted now, and persists its state through the store so that a
restart mid-window does not forget an exhausted quota.

Posting resumes only once BOTH windows have cleared, so the resume time is
the later of the two reset times.  The gate is an optimization that avoids
wasted calls; the channel's own 429 response stays authoritative.
"""

import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from signal_relay.scheduling.models import GateDecision, RateLimitState
from signal_relay.utils import from_epoch_seconds, utc_now

logger = logging.getLogger(__name__)


# Header names reported by the X API v2 on every write call
USER_REMAINING_HEADER = "x-user-limit-24hour-remaining"
USER_RESET_HEADER = "x-user-limit-24hour-reset"
APP_REMAINING_HEADER = "x-app-limit-24hour-remaining"
APP_RESET_HEADER = "x-app-limit-24hour-reset"


def parse_rate_limit_headers(headers: Mapping[str, str]) -> Dict[str, Any]:
    """Extract the dual-window quota fields from X API response headers.

    Reset headers are Unix epoch seconds.  Missing or unparseable headers
    come back as ``None``.

    Returns:
        Dict with ``remaining_user``, ``reset_user``, ``remaining_app`` and
        ``reset_app`` keys, ready to be splatted into
        :meth:`RateLimitGate.update_from_headers`.
    """
    lowered = {k.lower(): v for k, v in headers.items()}

    def _int(name: str) -> Optional[int]:
        raw = lowered.get(name)
        if raw is None or raw == "":
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            return None

    return {
        "remaining_user": _int(USER_REMAINING_HEADER),
        "reset_user": from_epoch_seconds(lowered.get(USER_RESET_HEADER)),
        "remaining_app": _int(APP_REMAINING_HEADER),
        "reset_app": from_epoch_seconds(lowered.get(APP_RESET_HEADER)),
    }


class RateLimitGate:
    """Tracks the per-user and per-app quota windows of one channel.

    One instance per process, holding its own state plus the injected store.
    Call :meth:`initialize` once at startup before any publish attempt.

    Args:
        db: Store exposing ``get_rate_limit_state`` and
            ``upsert_rate_limit_state``.
        service: Channel name used as the row key.
        clock: Returns the current aware UTC time (injectable for tests).
    """

    def __init__(
        self,
        db: "SupabaseDB",  # noqa: F821
        service: str = "twitter",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.service = service
        self._clock = clock
        self.user_limit_reset: Optional[datetime] = None
        self.app_limit_reset: Optional[datetime] = None
        self.is_rate_limited: bool = False
        self._initialized: bool = False

    # ================================================================
    # STARTUP
    # ================================================================

    async def initialize(self) -> None:
        """Load persisted state, creating the row if it does not exist.

        If the stored state says "limited" but both reset times are already
        in the past, the flag is cleared and persisted immediately.  Safe to
        call more than once: later calls are no-ops.

        Raises:
            DatabaseError: If the store cannot be read or written.
        """
        if self._initialized:
            return

        row = await self.db.get_rate_limit_state(self.service)
        if row is None:
            await self._save()
            logger.info(
                "[RATE LIMIT] Created rate limit state for '%s'",
                self.service,
            )
        else:
            state = RateLimitState.from_row(row)
            self.user_limit_reset = state.user_limit_reset
            self.app_limit_reset = state.app_limit_reset
            self.is_rate_limited = state.is_rate_limited

            if self.is_rate_limited:
                now = self._clock()
                user_clear = self.user_limit_reset is None or now >= self.user_limit_reset
                app_clear = self.app_limit_reset is None or now >= self.app_limit_reset
                if user_clear and app_clear:
                    self.is_rate_limited = False
                    await self._save()
                    logger.info(
                        "[RATE LIMIT] Limits reset since last run - resuming posts"
                    )
                else:
                    resume_at = self.resume_at
                    logger.warning(
                        "[RATE LIMIT] Restored limited state (resume at %s, %d min)",
                        resume_at.isoformat() if resume_at else "unknown",
                        self._minutes_until(resume_at),
                    )

        self._initialized = True

    # ================================================================
    # UPDATES
    # ================================================================

    async def update_from_headers(
        self,
        remaining_user: Optional[int] = None,
        reset_user: Optional[datetime] = None,
        remaining_app: Optional[int] = None,
        reset_app: Optional[datetime] = None,
    ) -> None:
        """Fold one response's quota information into the gate.

        Records any provided reset time.  A remaining count of exactly zero
        in either window sets the limited flag; a previously limited gate
        whose two reset times are both past is cleared.  The state is
        persisted only when something actually changed.
        """
        changed = False

        if reset_user is not None and reset_user != self.user_limit_reset:
            self.user_limit_reset = reset_user
            changed = True
        if reset_app is not None and reset_app != self.app_limit_reset:
            self.app_limit_reset = reset_app
            changed = True

        if remaining_user == 0 or remaining_app == 0:
            if not self.is_rate_limited:
                self.is_rate_limited = True
                changed = True
                resume_at = self.resume_at
                logger.warning(
                    "[RATE LIMIT] Quota exhausted (user=%s, app=%s) - pausing "
                    "posts until %s (%d min)",
                    remaining_user,
                    remaining_app,
                    resume_at.isoformat() if resume_at else "unknown",
                    self._minutes_until(resume_at),
                )
        elif self.is_rate_limited:
            now = self._clock()
            user_clear = self.user_limit_reset is not None and now >= self.user_limit_reset
            app_clear = self.app_limit_reset is not None and now >= self.app_limit_reset
            if user_clear and app_clear:
                self.is_rate_limited = False
                changed = True
                logger.info(
                    "[RATE LIMIT] Limits have reset (user=%s, app=%s) - resuming posts",
                    remaining_user,
                    remaining_app,
                )

        if changed:
            await self._save()

    async def mark_rate_limited(
        self,
        user_reset: Optional[datetime] = None,
        app_reset: Optional[datetime] = None,
    ) -> None:
        """Explicitly block posting after a hard rejection from the channel.

        Updates whichever reset time is provided, sets the flag and persists
        unconditionally.
        """
        if user_reset is not None:
            self.user_limit_reset = user_reset
        if app_reset is not None:
            self.app_limit_reset = app_reset
        self.is_rate_limited = True
        await self._save()

        resume_at = self.resume_at
        logger.warning(
            "[RATE LIMIT] Marked rate limited (resume at %s)",
            resume_at.isoformat() if resume_at else "unknown",
        )

    async def reset(self) -> None:
        """Clear all quota state (manual override)."""
        self.is_rate_limited = False
        self.user_limit_reset = None
        self.app_limit_reset = None
        await self._save()
        logger.info("[RATE LIMIT] Rate limit state reset")

    # ================================================================
    # DECISIONS
    # ================================================================

    @property
    def resume_at(self) -> Optional[datetime]:
        """Later of the two known reset times, or ``None`` if neither is known."""
        known = [t for t in (self.user_limit_reset, self.app_limit_reset) if t is not None]
        return max(known) if known else None

    async def can_post(self) -> GateDecision:
        """Decide whether a post may be attempted right now.

        A gate with no reset information at all allows posting.  A limited
        gate whose resume time has passed heals itself (flag cleared and
        persisted) and allows.
        """
        if not self.is_rate_limited:
            return GateDecision(allowed=True)

        resume_at = self.resume_at
        if resume_at is None:
            return GateDecision(allowed=True)

        if self._clock() >= resume_at:
            self.is_rate_limited = False
            await self._save()
            logger.info("[RATE LIMIT] Rate limit period expired - resuming posts")
            return GateDecision(allowed=True)

        return GateDecision(
            allowed=False,
            reason="Rate limited until both user and app limits reset",
            resume_at=resume_at,
            wait_minutes=self._minutes_until(resume_at),
        )

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of the gate for logging and health output."""
        resume_at = self.resume_at
        return {
            "service": self.service,
            "is_rate_limited": self.is_rate_limited,
            "user_limit_reset": (
                self.user_limit_reset.isoformat() if self.user_limit_reset else None
            ),
            "app_limit_reset": (
                self.app_limit_reset.isoformat() if self.app_limit_reset else None
            ),
            "resume_at": resume_at.isoformat() if resume_at else None,
            "minutes_until_resume": (
                self._minutes_until(resume_at) if resume_at else None
            ),
        }

    # ================================================================
    # INTERNAL HELPERS
    # ================================================================

    def _minutes_until(self, when: Optional[datetime]) -> int:
        if when is None:
            return 0
        seconds = (when - self._clock()).total_seconds()
        return max(0, math.ceil(seconds / 60))

    async def _save(self) -> None:
        state = RateLimitState(
            service=self.service,
            user_limit_reset=self.user_limit_reset,
            app_limit_reset=self.app_limit_reset,
            is_rate_limited=self.is_rate_limited,
            last_updated=self._clock(),
        )
        await self.db.upsert_rate_limit_state(state.to_row())


__all__ = [
    "RateLimitGate",
    "parse_rate_limit_headers",
]
