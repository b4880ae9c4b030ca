"""OpenAI-compatible chat completions backend."""

from __future__ import annotations

from typing import Any

from ...core.errors import ProcessingError
from .base import HttpLLMProvider


class OpenAICompatibleProvider(HttpLLMProvider):
    """Any server exposing ``POST {base_url}/chat/completions``."""

    provider_name = "openai_compatible"

    async def _complete(
        self,
        prompt: str,
        error_cls: type[ProcessingError],
        timeout: float,
        temperature: float,
        max_tokens: int,
        json_output: bool,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.cfg.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_output:
            payload["response_format"] = {"type": "json_object"}
        url = f"{self.cfg.base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        data = await self._post(url, payload, error_cls, timeout, headers=headers)
        try:
            choice = data["choices"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise error_cls(ProcessingError.TRANSIENT, "No choices in response") from exc
        if choice.get("finish_reason") == "content_filter":
            raise error_cls(ProcessingError.REJECTED, "Response blocked by content filter")
        return (choice.get("message") or {}).get("content") or ""
