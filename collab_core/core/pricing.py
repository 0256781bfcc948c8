"""
Pricing calculations for metered AI calls.

Fixed per-model price table, quoted in USD per 1K tokens.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from .token_counter import TokenUsage

DEFAULT_MODEL = "gpt-4"


@dataclass(frozen=True)
class ModelPricing:
    """Per-token pricing for a specific model."""
    input_cost_per_1k: Decimal
    output_cost_per_1k: Decimal


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table with a designated fallback model."""
    prices: Dict[str, ModelPricing]
    default_model: str = DEFAULT_MODEL

    def __post_init__(self):
        if self.default_model not in self.prices:
            raise ValueError(f"Default model {self.default_model} missing from pricing table")

    def get_pricing(self, model: str) -> ModelPricing:
        """Get pricing for a model.

        Unknown models are priced as the default model; pricing never
        fails a call.
        """
        return self.prices.get(model, self.prices[self.default_model])

    def is_known(self, model: str) -> bool:
        return model in self.prices


PRICING_TABLE = PricingTable({
    "gpt-4": ModelPricing(
        input_cost_per_1k=Decimal("0.03"),
        output_cost_per_1k=Decimal("0.06")
    ),
    "gpt-4-turbo": ModelPricing(
        input_cost_per_1k=Decimal("0.01"),
        output_cost_per_1k=Decimal("0.03")
    ),
    "gpt-3.5-turbo": ModelPricing(
        input_cost_per_1k=Decimal("0.0015"),
        output_cost_per_1k=Decimal("0.002")
    ),
    "claude-3-opus": ModelPricing(
        input_cost_per_1k=Decimal("0.015"),
        output_cost_per_1k=Decimal("0.075")
    ),
    "claude-3-sonnet": ModelPricing(
        input_cost_per_1k=Decimal("0.003"),
        output_cost_per_1k=Decimal("0.015")
    ),
    "claude-3-haiku": ModelPricing(
        input_cost_per_1k=Decimal("0.00025"),
        output_cost_per_1k=Decimal("0.00125")
    ),
})


def calculate_cost(model: str, usage: TokenUsage, table: PricingTable = PRICING_TABLE) -> float:
    """Calculate the cost of one call.

    cost = (tokens_in / 1000) * input_price + (tokens_out / 1000) * output_price

    Args:
        model: Model identifier; unknown models use the default model's pricing
        usage: Token usage data
        table: Pricing table to use

    Returns:
        Total cost in USD, exact to the formula (no rounding)
    """
    pricing = table.get_pricing(model)

    input_cost = (Decimal(usage.tokens_in) / Decimal("1000")) * pricing.input_cost_per_1k
    output_cost = (Decimal(usage.tokens_out) / Decimal("1000")) * pricing.output_cost_per_1k

    total_cost = input_cost + output_cost
    return float(total_cost)
