"""Plain-text normalization of feed content."""

from __future__ import annotations

from bs4 import BeautifulSoup


def html_to_text(content: str | None) -> str:
    """Convert feed HTML (or plain text) to whitespace-normalized text.

    Script, style and noscript blocks are dropped. Line structure is kept,
    empty lines are removed.

    Returns:
        The text, or an empty string if nothing readable remains
    """
    if not content or not content.strip():
        return ""
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator="\n")
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)
