"""Prompt builders for the summarize and tag calls."""

from __future__ import annotations

from typing import Sequence

from ..core.types import SummaryMode


_MODE_INSTRUCTIONS = {
    SummaryMode.BRIEF: "Write a brief summary of two to three sentences.",
    SummaryMode.DETAILED: (
        "Write a detailed summary of one to three short paragraphs covering the main "
        "claims, evidence and implications."
    ),
    SummaryMode.BULLET: "Summarize the article as three to six concise bullet points starting with '- '.",
}


def build_summary_prompt(content: str, mode: SummaryMode | str, max_chars: int) -> str:
    instruction = _MODE_INSTRUCTIONS[SummaryMode(mode)]
    return (
        "You summarize news articles for a monitoring digest. "
        f"{instruction} "
        "Use plain English, stay factual and do not add information that is not in the text. "
        "Output only the summary.\n\n"
        f"Article text:\n{content[:max_chars]}"
    )


def build_tag_prompt(content: str, summary: str, labels: Sequence[str], max_chars: int) -> str:
    labels_block = "\n".join(f"- {label}" for label in labels) or "- (none)"
    return (
        "Assign tags to the article below. Choose only from the allowed labels. "
        "Return strict JSON of the form "
        '{"tags": [{"label": "<label>", "confidence": <number between 0 and 1>}]}. '
        "Include only labels that clearly apply; return an empty list if none do.\n"
        f"Allowed labels:\n{labels_block}\n\n"
        f"Summary:\n{summary}\n\n"
        f"Article text (truncated):\n{content[:max_chars]}"
    )
