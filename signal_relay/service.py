"""
Host driver: wires the components together and runs them on a fixed cadence.

``SignalRelayService`` initializes the rate-limit gate once, then spawns two
background tasks: one calls ``SignalLifecycleMonitor.tick()``, the other
``PublishScheduler.tick()``, each followed by a sleep of the configured
interval.  Every tick's report is kept in ``last_results`` and consecutive
failing ticks are counted in ``failure_counts``, so background failures stay
observable instead of vanishing.
"""

import asyncio
import logging
import os
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

from signal_relay.agents.writer import create_writer
from signal_relay.config import Settings, get_settings
from signal_relay.database import SupabaseDB, get_db
from signal_relay.scheduling.publishing_scheduler import PublishScheduler
from signal_relay.scheduling.rate_limit_gate import RateLimitGate
from signal_relay.signals.lifecycle_monitor import SignalLifecycleMonitor
from signal_relay.tools.coingecko import CoinGeckoClient
from signal_relay.tools.telegram import TelegramBroadcaster
from signal_relay.tools.twitter import TwitterClient

logger = logging.getLogger(__name__)

MONITOR = "monitor"
SCHEDULER = "scheduler"


class SignalRelayService:
    """Runs the monitor and the scheduler as two background loops.

    Args:
        rate_limit_gate: Gate initialized once before the loops start.
        monitor: Lifecycle monitor (``tick()``).
        scheduler: Publish scheduler (``tick()``).
        interval_seconds: Sleep between ticks of each loop.
    """

    def __init__(
        self,
        rate_limit_gate: RateLimitGate,
        monitor: SignalLifecycleMonitor,
        scheduler: PublishScheduler,
        interval_seconds: int = 60,
    ) -> None:
        self.rate_limit_gate = rate_limit_gate
        self.monitor = monitor
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self.last_results: Dict[str, Any] = {}
        self.failure_counts: Dict[str, int] = {MONITOR: 0, SCHEDULER: 0}
        self._tasks: List[asyncio.Task] = []
        self._running: bool = False

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Initialize the gate and spawn both loops.

        Raises:
            DatabaseError: If the gate state cannot be loaded.
        """
        await self.rate_limit_gate.initialize()
        logger.info("[SERVICE] Rate limit status: %s", self.rate_limit_gate.get_status())

        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_loop(MONITOR, self.monitor.tick), name=MONITOR),
            asyncio.create_task(
                self._run_loop(SCHEDULER, self.scheduler.tick), name=SCHEDULER
            ),
        ]
        logger.info(
            "[SERVICE] Signal relay started (interval=%ds)", self.interval_seconds
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for them to finish."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("[SERVICE] Signal relay stopped")

    async def run_forever(self) -> None:
        """Start, then wait on the loops until cancelled."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    # ================================================================
    # LOOP
    # ================================================================

    async def run_once(self, name: str, tick: Callable[[], Awaitable[Any]]) -> Any:
        """Run a single tick and record its outcome under *name*."""
        report = await tick()
        self.last_results[name] = report

        if getattr(report, "errors", None):
            self.failure_counts[name] = self.failure_counts.get(name, 0) + 1
            logger.warning(
                "[SERVICE] %s tick reported %d errors (consecutive=%d)",
                name,
                len(report.errors),
                self.failure_counts[name],
            )
        else:
            self.failure_counts[name] = 0
        return report

    async def _run_loop(self, name: str, tick: Callable[[], Awaitable[Any]]) -> None:
        while self._running:
            try:
                await self.run_once(name, tick)
            except asyncio.CancelledError:
                logger.info("[SERVICE] %s loop cancelled", name)
                break
            except Exception:
                self.failure_counts[name] = self.failure_counts.get(name, 0) + 1
                logger.exception("[SERVICE] Unexpected error in %s loop", name)

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                logger.info("[SERVICE] %s loop sleep cancelled", name)
                break

        logger.info("[SERVICE] %s loop stopped", name)


# =============================================================================
# WIRING
# =============================================================================


async def build_service(
    settings: Optional[Settings] = None,
    db: Optional[SupabaseDB] = None,
) -> SignalRelayService:
    """Build the production component graph from settings and environment.

    The Telegram broadcaster is only created when ``TELEGRAM_BOT_TOKEN`` is
    set; without it messaging tiers stay pending.
    """
    settings = settings or get_settings()
    db = db or await get_db()

    gate = RateLimitGate(db, service=settings.rate_limit_service)
    twitter = TwitterClient(
        gate,
        max_length=settings.tweet_max_length,
        min_seconds_between_posts=settings.min_seconds_between_tweets,
        pre_send_jitter=settings.pre_send_jitter_seconds,
        retries=settings.post_retries,
        retry_delay=settings.post_retry_delay,
    )

    bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    telegram = TelegramBroadcaster(bot_token, db) if bot_token else None
    if telegram is None:
        logger.warning("[SERVICE] TELEGRAM_BOT_TOKEN missing, messaging tiers disabled")

    writer = create_writer(model=settings.llm_model, max_length=settings.tweet_max_length)

    scheduler = PublishScheduler(
        db,
        gate,
        twitter,
        telegram,
        writer,
        silver_delay_minutes=settings.silver_delay_minutes,
        public_delay_range=(
            settings.public_delay_min_minutes,
            settings.public_delay_max_minutes,
        ),
        rng=random.Random(),
    )
    monitor = SignalLifecycleMonitor(
        db,
        CoinGeckoClient(),
        writer,
        telegram,
        scheduler,
        scan_limit=settings.signal_scan_limit,
        entry_tolerance=settings.entry_tolerance,
    )

    return SignalRelayService(
        gate, monitor, scheduler, interval_seconds=settings.tick_interval_seconds
    )


__all__ = [
    "SignalRelayService",
    "build_service",
]
