"""
Token counting and usage tracking.

Holds the four token classes reported for every model response.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token usage data for cost calculation.

    Cache tokens are priced separately from plain input tokens, so the
    four classes are kept apart here and only combined for display totals.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def __post_init__(self):
        """Validate token counts are non-negative."""
        for name in ("input_tokens", "output_tokens",
                     "cache_creation_tokens", "cache_read_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")

    @property
    def total_input_tokens(self) -> int:
        """Input tokens across all classes (plain + cache write + cache read)."""
        return self.input_tokens + self.cache_creation_tokens + self.cache_read_tokens

    @property
    def total_tokens(self) -> int:
        """Total tokens used (all input classes + output)."""
        return self.total_input_tokens + self.output_tokens
