"""Feed tracker: monitor RSS/Atom feeds, deduplicate, summarize and tag articles."""

__version__ = "0.1.0"
