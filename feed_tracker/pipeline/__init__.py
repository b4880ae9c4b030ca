"""Article processing: normalization, summarization, tagging and retries."""

from .coordinator import PipelineCoordinator, ProcessOutcome
from .retry import RetryPolicy
from .text import html_to_text

__all__ = ["PipelineCoordinator", "ProcessOutcome", "RetryPolicy", "html_to_text"]
