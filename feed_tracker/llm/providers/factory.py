"""Provider factory and registry for hot-swappable LLM backends."""

from __future__ import annotations

import logging

import httpx

from ...config import AppConfig, get_api_key
from .base import HttpLLMProvider
from .gemini import GeminiProvider
from .openai_compatible import OpenAICompatibleProvider


_PROVIDER_REGISTRY: dict[str, type[HttpLLMProvider]] = {
    "gemini": GeminiProvider,
    "openai": OpenAICompatibleProvider,
    "openai_compatible": OpenAICompatibleProvider,
    "openai-compatible": OpenAICompatibleProvider,
}


def available_providers() -> list[str]:
    """Return the set of registered provider names."""
    return sorted(_PROVIDER_REGISTRY.keys())


def create_provider(
    cfg: AppConfig,
    llm_logger: logging.Logger | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HttpLLMProvider:
    """Build a provider instance from runtime config.

    The returned object serves as both Summarizer and Tagger.
    """
    name = cfg.provider.name.lower().strip()
    builder = _PROVIDER_REGISTRY.get(name)
    if builder is None:
        supported = ", ".join(available_providers())
        raise ValueError(f"Unsupported provider: {cfg.provider.name}. Supported: {supported}")
    return builder(
        cfg.provider,
        cfg.summary,
        cfg.tagging,
        get_api_key(cfg.provider),
        cfg.logging,
        llm_logger,
        transport=transport,
    )
