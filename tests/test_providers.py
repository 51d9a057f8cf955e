"""Tests for providers/ — factory, request shape, SDK error translation.

Uses pytest.importorskip for SDK-dependent tests — skips if anthropic/openai
are not installed. The SDK client is replaced by a mock (no API calls).
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from providers import ProviderError, RateLimitedError, create_provider


def _http_response(status, url):
    return httpx.Response(status, request=httpx.Request("POST", url))


# ─── Factory ─────────────────────────────────────────────────────

class TestCreateProvider:
    def test_unknown_type_raises(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            create_provider({"provider": "carrier-pigeon", "model": "x"})

    def test_openai_compat(self):
        pytest.importorskip("openai")
        from providers.openai_compat import GEMINI_BASE_URL, OpenAICompatProvider
        p = create_provider({
            "provider": "openai-compat",
            "model": "gemini-1.5-flash",
            "base_url": GEMINI_BASE_URL,
        }, "key")
        assert isinstance(p, OpenAICompatProvider)
        assert p.model == "gemini-1.5-flash"
        assert p.max_tokens == 1024
        assert str(p.client.base_url).startswith(GEMINI_BASE_URL.rstrip("/"))

    def test_openai_compat_defaults_to_gemini_endpoint(self):
        pytest.importorskip("openai")
        from providers.openai_compat import GEMINI_BASE_URL
        p = create_provider({"provider": "openai-compat", "model": "gemini-1.5-flash"}, "key")
        assert str(p.client.base_url).startswith(GEMINI_BASE_URL.rstrip("/"))

    def test_openai_compat_other_key_keeps_sdk_endpoint(self):
        pytest.importorskip("openai")
        p = create_provider({
            "provider": "openai-compat",
            "model": "gpt-4o-mini",
            "api_key_env": "OPENAI_API_KEY",
        }, "key")
        assert "generativelanguage" not in str(p.client.base_url)

    def test_anthropic_compat(self):
        pytest.importorskip("anthropic")
        from providers.anthropic_compat import AnthropicCompatProvider
        p = create_provider({
            "provider": "anthropic-compat",
            "model": "claude-haiku-4-5",
            "max_tokens": 256,
        }, "key")
        assert isinstance(p, AnthropicCompatProvider)
        assert p.max_tokens == 256


# ─── OpenAI-compatible ───────────────────────────────────────────

class TestOpenAICompat:
    URL = "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions"

    @pytest.fixture(autouse=True)
    def _skip_if_no_sdk(self):
        pytest.importorskip("openai")

    def _make_provider(self, **kwargs):
        from providers.openai_compat import OpenAICompatProvider
        defaults = dict(api_key="test-key", model="gemini-1.5-flash")
        defaults.update(kwargs)
        p = OpenAICompatProvider(**defaults)
        p.client = MagicMock()
        return p

    @staticmethod
    def _completion(content):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    @pytest.mark.asyncio
    async def test_returns_first_choice(self):
        p = self._make_provider()
        p.client.chat.completions.create.return_value = self._completion("Salaam!")
        assert await p.generate("hello") == "Salaam!"
        kwargs = p.client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gemini-1.5-flash"
        assert kwargs["messages"] == [{"role": "user", "content": "hello"}]
        assert kwargs["max_tokens"] == 1024

    @pytest.mark.asyncio
    async def test_system_prompt_first(self):
        p = self._make_provider(system_prompt="Be brief.")
        p.client.chat.completions.create.return_value = self._completion("ok")
        await p.generate("hello")
        messages = p.client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "Be brief."}
        assert messages[1]["role"] == "user"

    @pytest.mark.asyncio
    async def test_null_content_is_empty(self):
        p = self._make_provider()
        p.client.chat.completions.create.return_value = self._completion(None)
        assert await p.generate("hello") == ""

    @pytest.mark.asyncio
    async def test_no_choices_raises(self):
        p = self._make_provider()
        p.client.chat.completions.create.return_value = SimpleNamespace(choices=[])
        with pytest.raises(ProviderError):
            await p.generate("hello")

    @pytest.mark.asyncio
    async def test_rate_limit_translated(self):
        import openai
        p = self._make_provider()
        p.client.chat.completions.create.side_effect = openai.RateLimitError(
            "quota", response=_http_response(429, self.URL), body=None,
        )
        with pytest.raises(RateLimitedError):
            await p.generate("hello")

    @pytest.mark.asyncio
    async def test_connection_error_translated(self):
        import openai
        p = self._make_provider()
        p.client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", self.URL),
        )
        with pytest.raises(ProviderError) as exc:
            await p.generate("hello")
        assert not isinstance(exc.value, RateLimitedError)


# ─── Anthropic-compatible ────────────────────────────────────────

class TestAnthropicCompat:
    URL = "https://api.anthropic.com/v1/messages"

    @pytest.fixture(autouse=True)
    def _skip_if_no_sdk(self):
        pytest.importorskip("anthropic")

    def _make_provider(self, **kwargs):
        from providers.anthropic_compat import AnthropicCompatProvider
        defaults = dict(api_key="test-key", model="claude-haiku-4-5")
        defaults.update(kwargs)
        p = AnthropicCompatProvider(**defaults)
        p.client = MagicMock()
        return p

    @pytest.mark.asyncio
    async def test_returns_first_text_block(self):
        p = self._make_provider()
        p.client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="thinking", thinking="hmm"),
            SimpleNamespace(type="text", text="Answer"),
        ])
        assert await p.generate("q") == "Answer"

    @pytest.mark.asyncio
    async def test_system_prompt_passed(self):
        p = self._make_provider(system_prompt="Be brief.")
        p.client.messages.create.return_value = SimpleNamespace(content=[])
        assert await p.generate("q") == ""
        kwargs = p.client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be brief."
        assert kwargs["messages"] == [{"role": "user", "content": "q"}]

    @pytest.mark.asyncio
    async def test_rate_limit_translated(self):
        import anthropic
        p = self._make_provider()
        p.client.messages.create.side_effect = anthropic.RateLimitError(
            "slow down", response=_http_response(429, self.URL), body=None,
        )
        with pytest.raises(RateLimitedError):
            await p.generate("q")

    @pytest.mark.asyncio
    async def test_api_error_translated(self):
        import anthropic
        p = self._make_provider()
        p.client.messages.create.side_effect = anthropic.APIConnectionError(
            request=httpx.Request("POST", self.URL),
        )
        with pytest.raises(ProviderError):
            await p.generate("q")
