import math
from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class Generation:
    """Text and token counts returned by a provider call."""
    text: str
    tokens_in: int
    tokens_out: int


class TextGenerator(Protocol):
    """
    TextGenerator is the pluggable text-generation capability the AI
    gateway delegates to. Implementations raise on any provider failure;
    the gateway records the failure and reports it upstream.
    """

    def generate(self, provider: str, model: str, prompt: str) -> Generation: ...


class EchoGenerator:
    """
    deterministic offline generator. Token counts are estimated at four
    characters per token, rounded up.
    """

    def generate(self, provider: str, model: str, prompt: str) -> Generation:
        text = f'Mock AI response for: "{prompt[:50]}..."'
        return Generation(
            text=text,
            tokens_in=math.ceil(len(prompt) / 4),
            tokens_out=math.ceil(len(text) / 4),
        )
