"""LLM backends implementing the Summarizer and Tagger interfaces."""

from .base import HttpLLMProvider, Summarizer, Tagger
from .factory import available_providers, create_provider
from .gemini import GeminiProvider
from .openai_compatible import OpenAICompatibleProvider

__all__ = [
    "HttpLLMProvider",
    "Summarizer",
    "Tagger",
    "GeminiProvider",
    "OpenAICompatibleProvider",
    "available_providers",
    "create_provider",
]
