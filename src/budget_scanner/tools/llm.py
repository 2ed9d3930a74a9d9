"""
LLM gateways: submit a prompt, get the model's text back.

Every gateway also speaks the raw message payload
({"model", "max_tokens", "messages"}) so the /api/llm proxy can forward
whatever the browser sent.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import anthropic
import openai
import requests

from budget_scanner.domain.errors import LlmError


def build_payload(prompt: str, model: str, max_tokens: int) -> Dict[str, Any]:
    return {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }


def unwrap_reply(text: str) -> str:
    """Trim, and unwrap a reply that is itself a JSON-encoded string."""
    text = (text or "").strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return parsed if isinstance(parsed, str) else text


class OpenAILLMGateway:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 2048,
        timeout: float = 60.0,
        client: Optional[openai.OpenAI] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or openai.OpenAI(api_key=api_key, timeout=timeout)

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.chat.completions.create(
                model=payload.get("model") or self.model,
                max_tokens=payload.get("max_tokens") or self.max_tokens,
                messages=payload["messages"],
                temperature=0,
            )
        except openai.OpenAIError as e:
            raise LlmError(f"OpenAI request failed: {e}") from e
        return response.model_dump()

    @staticmethod
    def reply_text(raw: Dict[str, Any]) -> str:
        choices = raw.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        raw = self.create(build_payload(prompt, self.model, max_tokens or self.max_tokens))
        return self.reply_text(raw)


class AnthropicLLMGateway:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-3-haiku-20240307",
        max_tokens: int = 2048,
        timeout: float = 60.0,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.model = model
        self.max_tokens = max_tokens
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout)

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            message = self.client.messages.create(
                model=payload.get("model") or self.model,
                max_tokens=payload.get("max_tokens") or self.max_tokens,
                messages=payload["messages"],
            )
        except anthropic.AnthropicError as e:
            raise LlmError(f"Anthropic request failed: {e}") from e
        return message.model_dump()

    @staticmethod
    def reply_text(raw: Dict[str, Any]) -> str:
        content = raw.get("content") or []
        if not content:
            return ""
        return content[0].get("text") or ""

    def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        raw = self.create(build_payload(prompt, self.model, max_tokens or self.max_tokens))
        return self.reply_text(raw)


class ProxiedLLMGateway:
    """Posts the full payload to our /api/llm endpoint and reads back `tip`."""

    def __init__(self, base_url: str, model: str = "gpt-4o-mini", max_tokens: int = 2048, timeout: float = 60.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        payload = build_payload(prompt, self.model, max_tokens or self.max_tokens)
        try:
            resp = requests.post(f"{self.base_url}/api/llm", json=payload, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise LlmError(f"LLM proxy request failed: {e}") from e
        except ValueError as e:
            raise LlmError(f"LLM proxy returned non-JSON body: {e}") from e

        return data.get("tip") or ""
