"""Model router: completion provider backed by LiteLLM.

Supports cloud providers (OpenAI, Anthropic) and local models (Ollama)
with an optional fallback chain for whole-response completions.
"""

from __future__ import annotations

import os
from typing import Any, AsyncIterator, Protocol

import litellm
import structlog

from chatline.config import ChatlineConfig
from chatline.core.errors import ProviderError

logger = structlog.get_logger()

# Suppress LiteLLM's verbose logging
litellm.suppress_debug_info = True


class CompletionProvider(Protocol):
    """Anything that can turn a list of {role, content} dicts into text."""

    async def complete(self, messages: list[dict[str, Any]]) -> str: ...

    def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]: ...


class ModelRouter:
    """Routes completion requests through LiteLLM with fallback support."""

    def __init__(self, config: ChatlineConfig) -> None:
        self.config = config
        self._setup_provider_keys()

    def _setup_provider_keys(self) -> None:
        """Set up API keys from config into environment variables."""
        for provider_name, provider_cfg in self.config.models.providers.items():
            if provider_cfg.api_key_env:
                key = provider_cfg.get_api_key()
                if key:
                    # LiteLLM reads keys from env vars
                    os.environ.setdefault(provider_cfg.api_key_env, key)

            if provider_cfg.base_url and provider_name == "ollama":
                os.environ.setdefault("OLLAMA_API_BASE", provider_cfg.base_url)

    @property
    def default_model(self) -> str:
        return self.config.models.default

    def _request_kwargs(self, model_name: str, messages: list[dict[str, Any]], stream: bool) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "temperature": self.config.models.temperature,
            "max_tokens": self.config.models.max_tokens,
            "stream": stream,
        }

        # Get provider-specific base_url
        provider = model_name.split("/")[0] if "/" in model_name else ""
        provider_cfg = self.config.models.providers.get(provider)
        if provider_cfg and provider_cfg.base_url and provider != "ollama":
            kwargs["api_base"] = provider_cfg.base_url
        return kwargs

    async def complete(self, messages: list[dict[str, Any]], model: str | None = None) -> str:
        """Send a completion request and return the response text.

        Tries the specified model first, then falls back through the chain.
        """
        target_model = model or self.default_model

        models_to_try = [target_model]
        for fallback in self.config.models.fallback_chain:
            if fallback not in models_to_try:
                models_to_try.append(fallback)

        last_error: Exception | None = None

        for model_name in models_to_try:
            try:
                logger.debug("model_request", model=model_name, messages=len(messages))
                response = await litellm.acompletion(
                    **self._request_kwargs(model_name, messages, stream=False)
                )
                content = self._parse_content(response)
                if content is None:
                    raise ProviderError(f"Empty response from {model_name}")
                return content

            except Exception as e:
                last_error = e
                logger.warning("model_fallback", model=model_name, error=str(e))
                continue

        raise ProviderError(
            f"All models failed. Last error: {last_error}"
        ) from last_error

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion response, yielding text fragments.

        No fallback: fragments already yielded cannot be taken back.
        """
        target_model = model or self.default_model

        try:
            response = await litellm.acompletion(
                **self._request_kwargs(target_model, messages, stream=True)
            )
        except Exception as e:
            logger.warning("model_stream_failed", model=target_model, error=str(e))
            raise ProviderError(f"Failed to start stream from {target_model}: {e}") from e

        try:
            async for chunk in response:
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta and delta.content:
                    yield delta.content
        except Exception as e:
            logger.warning("model_stream_interrupted", model=target_model, error=str(e))
            raise ProviderError(f"Stream from {target_model} failed: {e}") from e

    @staticmethod
    def _parse_content(response: Any) -> str | None:
        """Extract the message text from a LiteLLM response."""
        choice = response.choices[0] if response.choices else None
        if not choice:
            return None
        content = choice.message.content
        return content or None
