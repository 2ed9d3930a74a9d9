from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import openai
import pytest
import requests

from budget_scanner.domain.errors import LlmError
from budget_scanner.tools.llm import (
    AnthropicLLMGateway,
    OpenAILLMGateway,
    ProxiedLLMGateway,
    build_payload,
    unwrap_reply,
)


def _dumpable(data):
    obj = MagicMock()
    obj.model_dump.return_value = data
    return obj


def test_build_payload_single_user_message():
    assert build_payload("hi", "m", 10) == {
        "model": "m",
        "max_tokens": 10,
        "messages": [{"role": "user", "content": "hi"}],
    }


def test_unwrap_reply():
    assert unwrap_reply('  "Spend less on coffee."  ') == "Spend less on coffee."
    assert unwrap_reply('{"a": 1}') == '{"a": 1}'
    assert unwrap_reply("plain tip\n") == "plain tip"


def test_openai_gateway_complete():
    client = MagicMock()
    client.chat.completions.create.return_value = _dumpable(
        {"choices": [{"message": {"role": "assistant", "content": '{"items": []}'}}]}
    )
    gateway = OpenAILLMGateway(model="gpt-4o-mini", max_tokens=2048, client=client)

    assert gateway.complete("read this receipt") == '{"items": []}'

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["max_tokens"] == 2048
    assert kwargs["messages"] == [{"role": "user", "content": "read this receipt"}]


def test_openai_gateway_wraps_provider_errors():
    client = MagicMock()
    client.chat.completions.create.side_effect = openai.OpenAIError("quota exceeded")

    with pytest.raises(LlmError, match="quota exceeded"):
        OpenAILLMGateway(client=client).complete("x")


def test_anthropic_gateway_reads_first_content_block():
    client = MagicMock()
    client.messages.create.return_value = _dumpable({"content": [{"type": "text", "text": "hello"}]})
    gateway = AnthropicLLMGateway(model="claude-3-haiku-20240307", client=client)

    assert gateway.complete("hi", max_tokens=256) == "hello"
    assert client.messages.create.call_args.kwargs["max_tokens"] == 256


def test_proxied_gateway_returns_tip():
    resp = MagicMock()
    resp.json.return_value = {"id": "x", "tip": '{"storeName": "A"}'}
    with patch("budget_scanner.tools.llm.requests.post", return_value=resp) as post:
        reply = ProxiedLLMGateway("http://backend:8000", model="m", max_tokens=99).complete("prompt")

    assert json.loads(reply) == {"storeName": "A"}
    assert post.call_args.args[0] == "http://backend:8000/api/llm"
    assert post.call_args.kwargs["json"]["max_tokens"] == 99


def test_proxied_gateway_http_error():
    resp = MagicMock()
    resp.raise_for_status.side_effect = requests.HTTPError("502 Bad Gateway")
    with patch("budget_scanner.tools.llm.requests.post", return_value=resp):
        with pytest.raises(LlmError):
            ProxiedLLMGateway("http://backend:8000").complete("prompt")
