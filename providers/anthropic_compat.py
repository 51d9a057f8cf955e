"""Anthropic-compatible provider.

Works with any model accessible through the Anthropic Messages API.
Conditional import — fails with clear message if anthropic SDK not installed.
"""

from __future__ import annotations

import asyncio
import logging

from . import ProviderError, RateLimitedError

log = logging.getLogger(__name__)

try:
    import anthropic
except ImportError:
    anthropic = None  # type: ignore[assignment]


class AnthropicCompatProvider:
    def __init__(
        self,
        api_key: str,
        model: str,
        max_tokens: int = 1024,
        base_url: str = "",
        system_prompt: str = "",
    ):
        if anthropic is None:
            raise RuntimeError(
                "Anthropic provider requires: pip install anthropic"
            )
        if base_url:
            self.client = anthropic.Anthropic(api_key=api_key, base_url=base_url, max_retries=0)
        else:
            self.client = anthropic.Anthropic(api_key=api_key, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt

    async def generate(self, text: str) -> str:
        params: dict = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": text}],
        }
        if self.system_prompt:
            params["system"] = self.system_prompt

        try:
            response = await asyncio.to_thread(self.client.messages.create, **params)
        except anthropic.RateLimitError as e:
            raise RateLimitedError(str(e)) from e
        except anthropic.AnthropicError as e:
            raise ProviderError(str(e)) from e

        # First text block; thinking/tool blocks are not expected here
        for block in response.content:
            if getattr(block, "type", "") == "text":
                return block.text
        return ""
