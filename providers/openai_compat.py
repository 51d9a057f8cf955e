"""OpenAI-compatible provider.

Works with Gemini (through its OpenAI-compatible endpoint), OpenAI cloud,
Ollama, vLLM, or any server implementing the chat completions API.
Conditional import — fails with clear message if openai SDK not installed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from . import ProviderError, RateLimitedError

log = logging.getLogger(__name__)

try:
    import openai
except ImportError:
    openai = None  # type: ignore[assignment]

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class OpenAICompatProvider:
    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        base_url: str = "",
        system_prompt: str = "",
    ):
        if openai is None:
            raise RuntimeError(
                "OpenAI-compatible provider requires: pip install openai"
            )
        kwargs: dict = {"api_key": api_key or "not-needed", "max_retries": 0}
        if base_url:
            kwargs["base_url"] = base_url
        self.client = openai.OpenAI(**kwargs)
        self.model = model
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    def _messages(self, text: str) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": text})
        return messages

    async def generate(self, text: str) -> str:
        """Call the chat completions API and return the first choice text."""
        try:
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.model,
                messages=self._messages(text),
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(str(e)) from e
        except openai.OpenAIError as e:
            raise ProviderError(str(e)) from e

        if not response.choices:
            raise ProviderError("Completion has no choices")
        return response.choices[0].message.content or ""
