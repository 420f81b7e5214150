"""Tests for ClaudeClient: request shape and usage tracking."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_relay.exceptions import ConfigurationError
from signal_relay.tools.claude_client import ClaudeClient


def _response(text, input_tokens=10, output_tokens=5):
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return response


@pytest.fixture
def anthropic_client():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=_response("alert"))
    return client


def test_missing_api_key_raises():
    with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
        ClaudeClient()


@pytest.mark.asyncio
async def test_generate_passes_system_and_tracks_usage(anthropic_client):
    client = ClaudeClient(model="test-model", client=anthropic_client)

    text = await client.generate("prompt", system="be brief", max_tokens=50)

    assert text == "alert"
    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["system"] == "be brief"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]
    assert client.usage_stats == {"input_tokens": 10, "output_tokens": 5}


@pytest.mark.asyncio
async def test_generate_without_system_omits_it(anthropic_client):
    client = ClaudeClient(client=anthropic_client)
    await client.generate("prompt")
    assert "system" not in anthropic_client.messages.create.await_args.kwargs
