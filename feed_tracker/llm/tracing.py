"""
Langfuse spans around the fetch cycle and the summarize and tag calls.

Tracing is optional. When it is disabled, or the SDK is not installed,
``start_span`` yields None and the other helpers ignore a None span.
"""

from __future__ import annotations

from contextlib import contextmanager
import json
import logging
import os
from typing import TYPE_CHECKING, Any, Iterator

from ..utils.logging import redact_text, truncate_text

if TYPE_CHECKING:
    from ..config import LangfuseConfig


logger = logging.getLogger("feed_tracker.tracing")

_TRACER = None
_CFG: LangfuseConfig | None = None


def setup_langfuse(cfg: LangfuseConfig) -> None:
    """Create the Langfuse client for this process, or disable tracing."""
    global _TRACER, _CFG  # noqa: PLW0603
    _CFG = cfg
    _TRACER = None
    if not cfg.enabled:
        return
    public_key = cfg.public_key or os.getenv("LANGFUSE_PUBLIC_KEY")
    secret_key = cfg.secret_key or os.getenv("LANGFUSE_SECRET_KEY")
    if not public_key or not secret_key:
        logger.warning("Langfuse tracing enabled but keys are missing; tracing disabled")
        return
    try:
        from langfuse import Langfuse  # type: ignore
    except ImportError:
        logger.warning("Langfuse tracing enabled but the langfuse package is not installed")
        return
    _TRACER = Langfuse(
        public_key=public_key,
        secret_key=secret_key,
        host=cfg.host or os.getenv("LANGFUSE_HOST"),
    )


def get_tracer():
    return _TRACER


@contextmanager
def start_span(name: str, input_value: Any | None = None, **metadata: Any) -> Iterator[Any | None]:
    """Open a span named ``name``; keyword arguments become span metadata."""
    if _TRACER is None:
        yield None
        return
    meta = {key: value if isinstance(value, (str, int, float, bool)) else str(value)
            for key, value in metadata.items() if value is not None}
    try:
        cm = _TRACER.start_as_current_span(name=name, input=_payload(input_value), metadata=meta)
        span = cm.__enter__()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Could not open span %s: %s", name, exc)
        yield None
        return
    try:
        yield span
    finally:
        try:
            cm.__exit__(None, None, None)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Could not close span %s: %s", name, exc)


def set_span_output(span: Any | None, output_value: Any) -> None:
    payload = _payload(output_value)
    if span is not None and payload is not None:
        _update(span, output=payload)


def record_span_error(span: Any | None, exc: BaseException) -> None:
    if span is not None:
        _update(span, level="ERROR", status_message=f"{type(exc).__name__}: {exc}")


def flush() -> None:
    """Send buffered spans before the process exits."""
    if _TRACER is None:
        return
    try:
        _TRACER.flush()
    except Exception as exc:  # noqa: BLE001
        logger.warning("Langfuse flush failed: %s", exc)


def _payload(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=True, default=str)
    if _CFG is None:
        return text
    return truncate_text(redact_text(text, _CFG.redaction), _CFG.max_text_chars)


def _update(span: Any, **fields: Any) -> None:
    try:
        span.update(**fields)
    except Exception as exc:  # noqa: BLE001
        logger.debug("Could not update span: %s", exc)
