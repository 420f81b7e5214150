"""Scheduling subsystem: tiered delayed delivery and the social rate-limit gate."""

from signal_relay.scheduling.models import (
    GateDecision,
    PostStatus,
    ProcessReport,
    RateLimitState,
    ScheduledPost,
    Tier,
)
from signal_relay.scheduling.publishing_scheduler import PublishScheduler
from signal_relay.scheduling.rate_limit_gate import RateLimitGate, parse_rate_limit_headers

__all__ = [
    "GateDecision",
    "PostStatus",
    "ProcessReport",
    "RateLimitState",
    "ScheduledPost",
    "Tier",
    "PublishScheduler",
    "RateLimitGate",
    "parse_rate_limit_headers",
]
