"""
OpenAI-backed text generator.

Adapts OpenAI chat completions to the TextGenerator capability. Cost
accounting and ledger writes stay in the gateway; this adapter only
returns text and token counts.
"""

from typing import Any, Optional

from openai import OpenAI

from .base import Generation


class OpenAIGenerator:
    """TextGenerator for provider "openai".

    All failures are loud: API errors propagate unchanged and a response
    without usage information is an error, so the gateway never records
    a successful call with unknown cost.
    """

    provider = "openai"

    def __init__(self, client: Optional[Any] = None, timeout: Optional[float] = None, **client_kwargs: Any):
        """Initialize the generator.

        Args:
            client: Pre-built OpenAI client; one is created when omitted
            timeout: Request timeout in seconds passed to the client
            **client_kwargs: Extra OpenAI client arguments (api_key, ...)
        """
        if client is None:
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            client = OpenAI(**client_kwargs)
        self.client = client

    def generate(self, provider: str, model: str, prompt: str) -> Generation:
        """Create a single-turn chat completion.

        Raises:
            ValueError: If the provider is not "openai" or the response
                lacks usage information
            OpenAI API errors: Propagated without modification
        """
        if provider != self.provider:
            raise ValueError(f"OpenAIGenerator cannot serve provider: {provider}")

        response = self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
        )

        usage = response.usage
        if not usage:
            raise ValueError("OpenAI response missing usage information")

        text = response.choices[0].message.content or ""
        return Generation(
            text=text,
            tokens_in=usage.prompt_tokens,
            tokens_out=usage.completion_tokens,
        )
