"""Google Gemini backend."""

from __future__ import annotations

from typing import Any

from ...core.errors import ProcessingError
from .base import HttpLLMProvider


class GeminiProvider(HttpLLMProvider):
    """Gemini ``generateContent`` over REST."""

    provider_name = "gemini"

    async def _complete(
        self,
        prompt: str,
        error_cls: type[ProcessingError],
        timeout: float,
        temperature: float,
        max_tokens: int,
        json_output: bool,
    ) -> str:
        generation: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_tokens}
        if json_output:
            generation["responseMimeType"] = "application/json"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation,
        }
        url = f"{self.cfg.base_url.rstrip('/')}/v1beta/models/{self.cfg.model}:generateContent"
        data = await self._post(
            url, payload, error_cls, timeout, params={"key": self.api_key}
        )
        return _extract_text(data, error_cls)


def _extract_text(data: dict[str, Any], error_cls: type[ProcessingError]) -> str:
    block_reason = (data.get("promptFeedback") or {}).get("blockReason")
    if block_reason:
        raise error_cls(ProcessingError.REJECTED, f"Prompt blocked: {block_reason}")
    candidates = data.get("candidates") or []
    if not candidates:
        raise error_cls(ProcessingError.TRANSIENT, "No candidates in response")
    candidate = candidates[0]
    finish = candidate.get("finishReason")
    if finish in {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"}:
        raise error_cls(ProcessingError.REJECTED, f"Response blocked: {finish}")
    parts = [p for p in (candidate.get("content") or {}).get("parts") or [] if isinstance(p, dict)]
    answer = "".join(p.get("text", "") for p in parts if not p.get("thought"))
    if answer:
        return answer
    # Thinking models can return only thought parts.
    return "".join(p.get("text", "") for p in parts)
