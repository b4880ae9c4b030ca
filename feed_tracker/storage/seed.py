"""Starter tag taxonomy inserted when the database is initialized."""

from __future__ import annotations

# (name, category, description)
STARTER_TAGS: list[tuple[str, str, str]] = [
    ("ai-trends", "topic", "High-level direction and trends in AI"),
    ("ai-tools", "topic", "New AI tools, features, and products"),
    ("ai-use-cases", "topic", "Real-world AI usage examples and applications"),
    ("ai-governance", "topic", "AI risk, compliance, security, and regulation"),
    ("ai-agents", "topic", "AI agent workflows and automation"),
    ("machine-learning", "topic", "Machine learning algorithms and techniques"),
    ("llm", "topic", "Large language models and NLP"),
    ("computer-vision", "topic", "Image and video AI"),
    ("robotics", "topic", "AI in robotics and automation"),
    ("healthcare", "industry", "AI in healthcare and medicine"),
    ("finance", "industry", "AI in financial services"),
    ("education", "industry", "AI in education and learning"),
    ("technology", "industry", "Technology sector general"),
    ("positive", "sentiment", "Positive developments or sentiment"),
    ("neutral", "sentiment", "Neutral or factual reporting"),
    ("negative", "sentiment", "Concerns, risks, or negative developments"),
]
