"""
External service clients for Signal Relay.

- ClaudeClient: Anthropic Claude API for alert writing
- CoinGeckoClient: CoinGecko prices (the pricing oracle)
- TelegramBroadcaster: Telegram Bot API fan-out to subscriber tiers
- TwitterClient: X API v2 publishing for the PUBLIC tier
"""

from signal_relay.tools.claude_client import ClaudeClient
from signal_relay.tools.coingecko import CoinGeckoClient
from signal_relay.tools.telegram import BroadcastResult, TelegramBroadcaster
from signal_relay.tools.twitter import TwitterClient

__all__ = [
    "ClaudeClient",
    "CoinGeckoClient",
    "BroadcastResult",
    "TelegramBroadcaster",
    "TwitterClient",
]
