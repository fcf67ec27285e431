"""Text-generation API client."""

from .client import Completion, RateLimitError, TextGenerationClient, TextGenerationError, Usage

__all__ = ["Completion", "RateLimitError", "TextGenerationClient", "TextGenerationError", "Usage"]
