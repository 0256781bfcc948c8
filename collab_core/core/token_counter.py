"""
Token usage reported by a text-generation call.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token counts for cost calculation.

    Exact counts as reported by the provider capability; no estimation.
    """
    tokens_in: int
    tokens_out: int

    def __post_init__(self):
        if self.tokens_in < 0:
            raise ValueError("tokens_in cannot be negative")
        if self.tokens_out < 0:
            raise ValueError("tokens_out cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.tokens_in + self.tokens_out
