"""
Signal Writer Agent: the content generator.

Turns a triggered ``Signal`` into the alert text delivered to every tier, and
shortens text that the social channel rejected as too long.

    1. ``generate(signal)``: build a prompt from the signal's levels, ask
       Claude for the alert, strip stray formatting artifacts.
    2. ``shorten(text)``: ask Claude for a tighter rewrite, then enforce the
       channel limit deterministically with :func:`fit_to_length`.

``shorten`` always returns text within ``max_length`` as X weighs it (URLs
count 23, emoji and CJK count 2) and keeps every ``$TICKER``, ``#hashtag``
and URL of the input whenever they fit.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional

import anthropic

from signal_relay.exceptions import ContentGenerationError, RetryExhaustedError
from signal_relay.signals.models import Signal
from signal_relay.tools.claude_client import ClaudeClient
from signal_relay.utils import clean_signal_text, tweet_length


logger = logging.getLogger("Writer")


# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT = """You write trade alerts for a crypto signal service.
Write like a sharp analyst sharing a setup, not like a bot announcement.
Lowercase except tickers. Use emojis sparingly. No markdown headers.
Return only the alert text, nothing else."""

SIGNAL_PROMPT_TEMPLATE = """Write the alert for this triggered long entry.

token: ${symbol}{name_part}
entry: ${entry}
target: ${target} (+{target_pct:.1f}%)
stop: ${stop} (-{stop_pct:.1f}%)
r:r: 1:{rr:.1f}
confidence: {confidence}

Format:
line 1: $TICKER and the setup in a few words
then entry / target / stop / r:r / confidence, one per line
one line on why the setup works
one or two hashtags

Keep it under {max_length} characters."""

SHORTEN_PROMPT_TEMPLATE = """Rewrite this trade alert so it is at most {max_length} characters.
Keep every $TICKER, #hashtag and URL exactly as written. Keep the price levels.
Drop filler words first. Return only the rewritten alert.

{text}"""


# Tokens that must survive shortening
_PROTECTED_RE = re.compile(r"^(\$[A-Za-z][A-Za-z0-9_]*|#\w+|https?://\S+)")


def _is_protected(token: str) -> bool:
    return bool(_PROTECTED_RE.match(token))


def protected_tokens(text: str) -> List[str]:
    """``$TICKER``, ``#hashtag`` and URL tokens of *text*, in order."""
    return [token for token in text.split() if _is_protected(token)]


def fit_to_length(text: str, max_length: int) -> str:
    """Deterministically cut *text* down to *max_length* weighted characters.

    Length is measured with :func:`~signal_relay.utils.tweet_length`.
    Protected tokens are kept in their original order; ordinary words are
    kept from the start of the text until the budget runs out.  Whitespace
    is collapsed to single spaces.  If the protected tokens alone exceed
    the limit the result is hard-cut.
    """
    if tweet_length(text) <= max_length:
        return text

    tokens = text.split()
    keep = [_is_protected(token) for token in tokens]

    # Weight of the protected tokens joined by single spaces
    total = sum(tweet_length(t) for t, k in zip(tokens, keep) if k)
    total += max(0, sum(keep) - 1)

    for i, token in enumerate(tokens):
        if keep[i]:
            continue
        extra = tweet_length(token) + (1 if total else 0)
        if total + extra > max_length:
            break
        keep[i] = True
        total += extra

    result = " ".join(t for t, k in zip(tokens, keep) if k)
    while result and tweet_length(result) > max_length:
        result = result[:-1].rstrip()
    return result


# =============================================================================
# WRITER AGENT
# =============================================================================


class SignalWriterAgent:
    """Generate and shorten signal alert text with Claude.

    Args:
        claude: Async Claude API client used for generation.
        max_length: Social channel length limit that ``shorten`` enforces.
        rejection_margin: Extra cut applied when the channel rejected text
            that the local count thought would fit.
    """

    def __init__(
        self, claude: ClaudeClient, max_length: int = 280, rejection_margin: int = 20
    ) -> None:
        self.claude = claude
        self.max_length = max_length
        self.rejection_margin = rejection_margin

    # -----------------------------------------------------------------
    # PUBLIC INTERFACE
    # -----------------------------------------------------------------

    async def generate(self, signal: Signal) -> str:
        """Produce the alert text for a signal whose entry just triggered.

        Raises:
            ContentGenerationError: If Claude fails or returns empty text.
        """
        prompt = self._build_prompt(signal)

        try:
            raw = await self.claude.generate(
                prompt, system=SYSTEM_PROMPT, max_tokens=400, temperature=0.7
            )
        except (RetryExhaustedError, anthropic.APIError) as exc:
            raise ContentGenerationError(
                f"Claude failed to write alert for {signal.token_symbol}: {exc}"
            ) from exc

        text = clean_signal_text(raw or "")
        if not text:
            raise ContentGenerationError(
                f"Claude returned empty alert for {signal.token_symbol}"
            )

        logger.info(
            "Generated alert for $%s (%d weighted chars, cumulative usage %s)",
            signal.token_symbol,
            tweet_length(text),
            self.claude.usage_stats,
        )
        return text

    async def shorten(self, text: str, rejected: bool = False) -> str:
        """Return a variant of *text* within ``max_length`` as X counts it.

        The LLM rewrite is used when it fits and keeps every protected token;
        otherwise the text is cut with :func:`fit_to_length`.

        Args:
            text: Alert text to shorten.
            rejected: The channel already refused *text* as too long.  The
                result is then always at least ``rejection_margin`` shorter
                than the input, even when the local count says it fits.
        """
        length = tweet_length(text)
        budget = self.max_length
        if rejected:
            budget = max(1, min(budget, length) - self.rejection_margin)
        if length <= budget:
            return text

        candidate: Optional[str] = None
        try:
            raw = await self.claude.generate(
                SHORTEN_PROMPT_TEMPLATE.format(max_length=budget, text=text),
                system=SYSTEM_PROMPT,
                max_tokens=300,
                temperature=0.3,
            )
            candidate = clean_signal_text(raw or "")
        except (RetryExhaustedError, anthropic.APIError) as exc:
            logger.warning("LLM shorten failed, cutting deterministically: %s", exc)

        required = set(protected_tokens(text))
        if candidate and required.issubset(protected_tokens(candidate)):
            if tweet_length(candidate) <= budget:
                logger.info(
                    "Shortened %d -> %d weighted chars", length, tweet_length(candidate)
                )
                return candidate
            return fit_to_length(candidate, budget)

        return fit_to_length(text, budget)

    # -----------------------------------------------------------------
    # PROMPT
    # -----------------------------------------------------------------

    def _build_prompt(self, signal: Signal) -> str:
        entry = signal.entry_price
        target_pct = (signal.target_price - entry) / entry * 100 if entry else 0.0
        stop_pct = (entry - signal.stop_price) / entry * 100 if entry else 0.0
        risk = entry - signal.stop_price
        rr = (signal.target_price - entry) / risk if risk > 0 else 0.0

        return SIGNAL_PROMPT_TEMPLATE.format(
            symbol=signal.token_symbol.upper(),
            name_part=f" ({signal.token_name})" if signal.token_name else "",
            entry=_fmt_price(entry),
            target=_fmt_price(signal.target_price),
            stop=_fmt_price(signal.stop_price),
            target_pct=target_pct,
            stop_pct=stop_pct,
            rr=rr,
            confidence=(
                f"{signal.confidence:.0f}%" if signal.confidence is not None else "n/a"
            ),
            max_length=self.max_length,
        )


def _fmt_price(price: float) -> str:
    """Compact price formatting: more decimals for sub-dollar tokens."""
    if price >= 1:
        return f"{price:,.2f}"
    return f"{price:.6f}".rstrip("0").rstrip(".")


# =============================================================================
# FACTORY
# =============================================================================


def create_writer(model: str = "claude-sonnet-4-5", max_length: int = 280) -> SignalWriterAgent:
    """Factory function to create a ``SignalWriterAgent`` with a default client."""
    claude = ClaudeClient(model=model)
    return SignalWriterAgent(claude=claude, max_length=max_length)


__all__ = [
    "SignalWriterAgent",
    "create_writer",
    "fit_to_length",
    "protected_tokens",
]
