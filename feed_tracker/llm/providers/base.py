"""Interfaces of the summarization and tagging collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
import logging
import time
from typing import Any, Sequence

import httpx

from ...config import LoggingConfig, ProviderConfig, SummaryConfig, TaggingConfig
from ...core.errors import ProcessingError, SummarizeError, TagError
from ...core.types import SummaryMode, SummaryResult
from ...fetch.reader import parse_retry_after
from ...utils.logging import log_event, redact_text, truncate_text
from ..prompts import build_summary_prompt, build_tag_prompt
from ..response import parse_tag_payload
from ..tracing import record_span_error, set_span_output, start_span


class Summarizer(ABC):
    """Produces a summary of article text."""

    @abstractmethod
    async def summarize(self, content: str, mode: SummaryMode) -> SummaryResult:
        """Return the summary.

        Raises:
            SummarizeError: transient (retry-eligible) or rejected
        """
        raise NotImplementedError


class Tagger(ABC):
    """Proposes tag labels with confidences for an article."""

    @abstractmethod
    async def tag(
        self, content: str, summary: str, labels: Sequence[str]
    ) -> list[tuple[str, Any]]:
        """Return (label, confidence) candidates.

        Raises:
            TagError: transient (retry-eligible) or rejected
        """
        raise NotImplementedError


class HttpLLMProvider(Summarizer, Tagger):
    """Shared request, error mapping and logging for HTTP LLM backends.

    Subclasses implement ``_complete`` for their wire format.
    """

    provider_name = "llm"

    def __init__(
        self,
        cfg: ProviderConfig,
        summary_cfg: SummaryConfig,
        tagging_cfg: TaggingConfig,
        api_key: str | None,
        log_cfg: LoggingConfig,
        llm_logger: logging.Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ValueError(f"Missing API key for provider {self.provider_name}")
        self.cfg = cfg
        self.summary_cfg = summary_cfg
        self.tagging_cfg = tagging_cfg
        self.api_key = api_key
        self.log_cfg = log_cfg
        self.llm_logger = llm_logger
        self.transport = transport

    @property
    def model_id(self) -> str:
        return f"{self.provider_name}:{self.cfg.model}"

    async def summarize(self, content: str, mode: SummaryMode) -> SummaryResult:
        prompt = build_summary_prompt(content, mode, self.summary_cfg.max_chars)
        started = time.perf_counter()
        with start_span(
            f"{self.provider_name}.summarize",
            input_value=prompt,
            model=self.cfg.model,
            summary_mode=SummaryMode(mode).value,
        ) as span:
            try:
                text = await self._complete(
                    prompt,
                    error_cls=SummarizeError,
                    timeout=self.summary_cfg.timeout_seconds,
                    temperature=0.2,
                    max_tokens=1024,
                    json_output=False,
                )
            except ProcessingError as exc:
                record_span_error(span, exc)
                self._log_llm_response("llm_summarize", f"error_{exc.kind}", str(exc), prompt)
                raise
            text = text.strip()
            if not text:
                exc = SummarizeError(ProcessingError.TRANSIENT, "Empty summary returned")
                record_span_error(span, exc)
                self._log_llm_response("llm_summarize", "empty", "", prompt)
                raise exc
            set_span_output(span, text)
        self._log_llm_response("llm_summarize", "ok", text, prompt)
        return SummaryResult(
            text=text,
            word_count=len(text.split()),
            model_id=self.model_id,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

    async def tag(
        self, content: str, summary: str, labels: Sequence[str]
    ) -> list[tuple[str, Any]]:
        prompt = build_tag_prompt(content, summary, labels, self.summary_cfg.max_chars)
        with start_span(
            f"{self.provider_name}.tag",
            input_value=prompt,
            model=self.cfg.model,
            labels=len(labels),
        ) as span:
            try:
                raw = await self._complete(
                    prompt,
                    error_cls=TagError,
                    timeout=self.tagging_cfg.timeout_seconds,
                    temperature=0.0,
                    max_tokens=512,
                    json_output=True,
                )
            except ProcessingError as exc:
                record_span_error(span, exc)
                self._log_llm_response("llm_tag", f"error_{exc.kind}", str(exc), prompt)
                raise
            try:
                pairs = parse_tag_payload(raw)
            except ValueError as exc:  # JSONDecodeError is a ValueError
                record_span_error(span, exc)
                self._log_llm_response("llm_tag", "parse_error", raw, prompt)
                raise TagError(ProcessingError.TRANSIENT, f"Unparseable tag response: {exc}") from exc
            set_span_output(span, raw)
        self._log_llm_response("llm_tag", "ok", raw, prompt)
        return pairs

    @abstractmethod
    async def _complete(
        self,
        prompt: str,
        error_cls: type[ProcessingError],
        timeout: float,
        temperature: float,
        max_tokens: int,
        json_output: bool,
    ) -> str:
        """Send one prompt and return the model's text output."""
        raise NotImplementedError

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        error_cls: type[ProcessingError],
        timeout: float,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=timeout, trust_env=self.cfg.trust_env, transport=self.transport
            ) as client:
                resp = await client.post(url, params=params, headers=headers, json=payload)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPStatusError as exc:
            raise classify_status_error(exc, error_cls) from exc
        except httpx.HTTPError as exc:
            raise error_cls(ProcessingError.TRANSIENT, f"{type(exc).__name__}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise error_cls(ProcessingError.TRANSIENT, f"Invalid JSON body: {exc}") from exc

    def _log_llm_response(self, event: str, status: str, content: str, prompt: str) -> None:
        if self.llm_logger is None:
            return
        redaction = self.log_cfg.llm_log_redaction
        payload: dict[str, Any] = {
            "event": event,
            "status": status,
            "provider": self.provider_name,
            "model": self.cfg.model,
        }
        if self.log_cfg.llm_log_detail == "prompt_response":
            payload["raw_prompt"] = truncate_text(redact_text(prompt, redaction))
        if self.log_cfg.llm_log_detail != "summary_only":
            payload["raw_response"] = truncate_text(redact_text(content, redaction))
        log_event(self.llm_logger, "LLM response", **payload)


def classify_status_error(
    exc: httpx.HTTPStatusError, error_cls: type[ProcessingError]
) -> ProcessingError:
    """Map an HTTP error status to a transient or rejected processing error."""
    status = exc.response.status_code
    message = f"HTTP {status}"
    if status == 429:
        retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
        return error_cls(ProcessingError.TRANSIENT, message, retry_after=retry_after)
    if status >= 500 or status == 408:
        return error_cls(ProcessingError.TRANSIENT, message)
    return error_cls(ProcessingError.REJECTED, message)
