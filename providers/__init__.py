"""AI provider interface and shared errors.

Defines the contract between the AI responder and any text-generation
backend. Providers translate SDK failures into RateLimitedError (the
backend asked us to slow down) or ProviderError (anything else).
"""

from __future__ import annotations

import logging
from typing import Protocol

log = logging.getLogger(__name__)


class ProviderError(Exception):
    """Generation failed for a reason other than rate limiting."""


class RateLimitedError(ProviderError):
    """The backend rejected the call because of its own rate limit."""


class AIProvider(Protocol):
    """Protocol for text-generation providers."""

    async def generate(self, text: str) -> str:
        """Send one user prompt, return the first completion text."""
        ...


def create_provider(ai_config: dict, api_key: str = "") -> AIProvider:
    """Factory: create provider from the [ai] config section."""
    provider_type = ai_config.get("provider", "")

    if provider_type == "openai-compat":
        from .openai_compat import GEMINI_BASE_URL, OpenAICompatProvider
        base_url = ai_config.get("base_url", "")
        # A Gemini key with no explicit endpoint means Gemini's OpenAI surface
        if not base_url and ai_config.get("api_key_env", "GEMINI_API_KEY") == "GEMINI_API_KEY":
            base_url = GEMINI_BASE_URL
        return OpenAICompatProvider(
            api_key=api_key,
            model=ai_config["model"],
            max_tokens=ai_config.get("max_tokens", 1024),
            base_url=base_url,
            system_prompt=ai_config.get("system_prompt", ""),
        )
    if provider_type == "anthropic-compat":
        from .anthropic_compat import AnthropicCompatProvider
        return AnthropicCompatProvider(
            api_key=api_key,
            model=ai_config["model"],
            max_tokens=ai_config.get("max_tokens", 1024),
            base_url=ai_config.get("base_url", ""),
            system_prompt=ai_config.get("system_prompt", ""),
        )
    raise ValueError(f"Unknown provider type: {provider_type!r}")
