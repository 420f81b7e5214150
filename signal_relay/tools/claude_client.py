"""
Async Claude API client for content-generation calls.

Uses the ``anthropic`` Python SDK (``AsyncAnthropic``) to interact with
Anthropic's Messages API.  The signal writer agent is its only consumer.

Key features:
    - Automatic retry with exponential backoff via ``@with_retry``
    - Token usage tracking (input + output)
    - Configurable model, temperature, and max_tokens

Fail-fast philosophy: if all retry attempts are exhausted the original
``anthropic`` exception propagates wrapped in ``RetryExhaustedError``.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from signal_relay.exceptions import ConfigurationError
from signal_relay.utils import with_retry

logger = logging.getLogger(__name__)

# Errors worth another attempt: rate limits, overloads, timeouts, 5xx
_RETRYABLE = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)


class ClaudeClient:
    """Async Claude API client.

    Args:
        api_key: Anthropic API key.  Falls back to the
            ``ANTHROPIC_API_KEY`` environment variable.
        model: Model identifier.
        client: Optional pre-built ``AsyncAnthropic`` (tests inject a mock).

    Raises:
        ConfigurationError: If no API key is provided and
            ``ANTHROPIC_API_KEY`` is unset.

    Usage::

        client = ClaudeClient()
        text = await client.generate("Write a 2-line trade alert for ...")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        client: Optional[Any] = None,
    ) -> None:
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
            if not api_key:
                raise ConfigurationError(
                    "ANTHROPIC_API_KEY is not set; the signal writer needs it"
                )
            client = AsyncAnthropic(api_key=api_key)
        self.client = client
        self.model = model
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    # ------------------------------------------------------------------
    # Text generation
    # ------------------------------------------------------------------

    @with_retry(max_attempts=3, retryable_exceptions=_RETRYABLE)
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        """Generate a plain-text response from the model.

        Args:
            prompt: The user message content.
            system: Optional system prompt.
            max_tokens: Maximum tokens in the response.
            temperature: Sampling temperature (0.0 -- 1.0).

        Returns:
            The model's text response.
        """
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt}]

        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        response = await self.client.messages.create(**kwargs)

        # Track token usage
        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens

        logger.debug(
            "Claude generate: in=%d out=%d tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )

        return response.content[0].text

    # ------------------------------------------------------------------
    # Usage tracking
    # ------------------------------------------------------------------

    @property
    def usage_stats(self) -> Dict[str, int]:
        """Cumulative token usage since this client was instantiated."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }
