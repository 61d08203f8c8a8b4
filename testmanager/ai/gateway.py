"""
Playwright Test Manager
LLM Gateway.

Provider-agnostic chat router for the AI step importer:
    - Anthropic Claude, OpenAI, Google Gemini, xAI Grok (OpenAI-compatible)
    - Local stub when no API key is configured (dev/test)
    - Provider selection and credentials come from the settings table,
      falling back to environment variables

Usage:
    from testmanager.ai.gateway import get_gateway
    result = get_gateway().chat([{"role": "user", "content": "..."}])
    result["content"]
"""

import logging
import threading
import time
from abc import ABC, abstractmethod

from testmanager.core.exceptions import ExternalServiceError
from testmanager.services import settings_service

logger = logging.getLogger(__name__)


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for LLM providers."""

    name = "abstract"

    def __init__(self, api_key: str = "", endpoint: str | None = None):
        self.api_key = api_key or ""
        self.endpoint = endpoint
        self._client = None

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": "..."} dicts.
            model: Model identifier string.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── Anthropic Provider ────────────────────────────────────────────────────────

class AnthropicProvider(LLMProvider):
    """Claude API (Anthropic) provider."""

    name = "claude"

    def _get_client(self):
        if self._client is None:
            import anthropic
            kwargs = {"api_key": self.api_key}
            if self.endpoint:
                kwargs["base_url"] = self.endpoint
            self._client = anthropic.Anthropic(**kwargs)
        return self._client

    def chat(self, messages: list, model: str = "claude-3-5-sonnet-20241022", **kwargs) -> dict:
        client = self._get_client()

        # Separate system message
        system_msg = ""
        chat_messages = []
        for m in messages:
            if m["role"] == "system":
                system_msg = m["content"]
            else:
                chat_messages.append(m)

        params = {
            "model": model,
            "messages": chat_messages,
            "max_tokens": kwargs.get("max_tokens", 4000),
            "temperature": kwargs.get("temperature", 0.2),
        }
        if system_msg:
            params["system"] = system_msg

        response = client.messages.create(**params)
        return {
            "content": response.content[0].text if response.content else "",
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


# ── OpenAI Provider ───────────────────────────────────────────────────────────

class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"

    def _get_client(self):
        if self._client is None:
            import openai
            kwargs = {"api_key": self.api_key}
            if self.endpoint:
                kwargs["base_url"] = self.endpoint
            self._client = openai.OpenAI(**kwargs)
        return self._client

    def chat(self, messages: list, model: str = "gpt-4o", **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 4000),
            temperature=kwargs.get("temperature", 0.2),
        )
        if not response.choices:
            raise ExternalServiceError(self.name, "empty response")
        usage = response.usage
        return {
            "content": response.choices[0].message.content or "",
            "prompt_tokens": usage.prompt_tokens if usage else 0,
            "completion_tokens": usage.completion_tokens if usage else 0,
            "model": model,
        }


class GrokProvider(OpenAIProvider):
    """xAI Grok through its OpenAI-compatible endpoint."""

    name = "grok"

    def __init__(self, api_key: str = "", endpoint: str | None = None):
        super().__init__(api_key, endpoint or settings_service.DEFAULT_ENDPOINTS["grok"])

    def chat(self, messages: list, model: str = "grok-2-latest", **kwargs) -> dict:
        kwargs.setdefault("temperature", 0.5)
        return super().chat(messages, model, **kwargs)


# ── Google Gemini Provider ───────────────────────────────────────────────────

class GeminiProvider(LLMProvider):
    """Google Gemini API provider (google-genai SDK)."""

    name = "gemini"

    def _get_client(self):
        if self._client is None:
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def chat(self, messages: list, model: str = "gemini-1.5-flash", **kwargs) -> dict:
        client = self._get_client()
        from google.genai import types

        # Separate system instruction from conversation messages
        system_parts = []
        contents = []
        for m in messages:
            if m["role"] == "system":
                system_parts.append(m["content"])
            else:
                # Gemini uses "user" and "model" roles
                role = "model" if m["role"] == "assistant" else "user"
                contents.append(types.Content(role=role, parts=[types.Part(text=m["content"])]))

        config = types.GenerateContentConfig(
            temperature=kwargs.get("temperature", 0.2),
            max_output_tokens=kwargs.get("max_tokens", 4000),
        )
        if system_parts:
            config.system_instruction = "\n\n".join(system_parts)

        response = client.models.generate_content(model=model, contents=contents, config=config)
        usage = response.usage_metadata
        return {
            "content": response.text or "",
            "prompt_tokens": getattr(usage, "prompt_token_count", 0) or 0,
            "completion_tokens": getattr(usage, "candidates_token_count", 0) or 0,
            "model": model,
        }


# ── Local Stub Provider (for dev/test without API keys) ──────────────────────

class LocalStubProvider(LLMProvider):
    """
    Returns an empty completion so callers take their offline path
    (keyword heuristics for steps, original text for name fixes).
    """

    name = "local"

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        return {"content": "", "prompt_tokens": 0, "completion_tokens": 0, "model": "local-stub"}


PROVIDER_CLASSES = {
    "claude": AnthropicProvider,
    "openai": OpenAIProvider,
    "grok": GrokProvider,
    "gemini": GeminiProvider,
}


# ═════════════════════════════════════════════════════════════════════════════
# Gateway
# ═════════════════════════════════════════════════════════════════════════════

class LLMGateway:
    """
    Central gateway for all LLM calls.

    Provider clients are cached per (provider, api_key, endpoint) so a key
    change in the settings table takes effect on the next call.
    """

    def __init__(self):
        self._providers = {}
        self._lock = threading.Lock()
        self._local = LocalStubProvider()

    def _get_provider(self, provider_name: str | None) -> tuple[LLMProvider, dict]:
        """Resolve the configured provider. Falls back to the local stub without a key."""
        resolved = settings_service.provider_settings(provider_name)
        if not resolved["api_key"]:
            logger.warning(
                "AI provider '%s' has no API key configured. Falling back to local stub.",
                resolved["provider"],
            )
            return self._local, resolved

        cache_key = (resolved["provider"], resolved["api_key"], resolved["endpoint"])
        with self._lock:
            provider = self._providers.get(cache_key)
            if provider is None:
                cls = PROVIDER_CLASSES[resolved["provider"]]
                provider = cls(api_key=resolved["api_key"], endpoint=resolved["endpoint"])
                self._providers[cache_key] = provider
        return provider, resolved

    def chat(self, messages: list, *, provider: str | None = None, model: str | None = None, **kwargs) -> dict:
        """
        Send one chat completion request. No retries.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, provider, latency_ms}

        Raises:
            ExternalServiceError: the provider call failed.
        """
        impl, resolved = self._get_provider(provider)
        model = model or resolved["model"]
        start_time = time.time()
        try:
            result = impl.chat(messages, model, **kwargs)
        except ExternalServiceError:
            raise
        except Exception as e:
            logger.error("LLM call failed (%s/%s): %s", resolved["provider"], model, e,
                         extra={"provider": resolved["provider"]})
            raise ExternalServiceError(resolved["provider"], str(e)) from e

        result["latency_ms"] = int((time.time() - start_time) * 1000)
        result["provider"] = impl.name
        logger.info(
            "LLM call %s/%s: %d+%d tokens in %d ms",
            impl.name, result.get("model"), result.get("prompt_tokens", 0),
            result.get("completion_tokens", 0), result["latency_ms"],
            extra={"provider": impl.name},
        )
        return result


_gateway = None
_gateway_lock = threading.Lock()


def get_gateway() -> LLMGateway:
    """Process-wide gateway, built on first use."""
    global _gateway
    if _gateway is None:
        with _gateway_lock:
            if _gateway is None:
                _gateway = LLMGateway()
    return _gateway


def reset_gateway():
    global _gateway
    with _gateway_lock:
        _gateway = None
