"""
Pricing calculations and rate management.

Maps model identifiers to rate families and turns token usage into a
dollar cost breakdown.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict

from .billing import BillingContext, is_subscription
from .token_counter import TokenUsage

MILLION = Decimal("1000000")
DEFAULT_FAMILY = "sonnet"


@dataclass(frozen=True)
class ModelRates:
    """Per-million-token rates for one model family."""
    input: Decimal
    output: Decimal
    cache_write: Decimal
    cache_read: Decimal


@dataclass(frozen=True)
class CostBreakdown:
    """Dollar attribution of one usage event.

    When ``is_equivalent`` is set the figures are what the usage would
    cost on pay-per-token billing, not an actual bill.
    """
    input_cost: float
    output_cost: float
    cache_write_cost: float
    cache_read_cost: float
    total_cost: float
    cache_savings: float
    is_equivalent: bool = False


@dataclass(frozen=True)
class PricingTable:
    """Fixed pricing table keyed by model family."""
    prices: Dict[str, ModelRates]

    def resolve_family(self, model: str) -> str:
        """Resolve a model identifier to a rate family.

        Families are matched by case-insensitive substring in table order.
        Unknown identifiers fall back to the sonnet family; this is an
        approximation, not an error.
        """
        lowered = (model or "").lower()
        for family in self.prices:
            if family in lowered:
                return family
        return DEFAULT_FAMILY

    def get_rates(self, model: str) -> ModelRates:
        """Get rates for a model identifier (never raises)."""
        return self.prices[self.resolve_family(model)]


# Order matters: the first family whose name appears in the model id wins.
PRICING_TABLE = PricingTable({
    "opus": ModelRates(
        input=Decimal("15"),
        output=Decimal("75"),
        cache_write=Decimal("18.75"),
        cache_read=Decimal("1.50"),
    ),
    "sonnet": ModelRates(
        input=Decimal("3"),
        output=Decimal("15"),
        cache_write=Decimal("3.75"),
        cache_read=Decimal("0.30"),
    ),
    "haiku": ModelRates(
        input=Decimal("1"),
        output=Decimal("5"),
        cache_write=Decimal("1.25"),
        cache_read=Decimal("0.10"),
    ),
})


def calculate_cost(
    model: str,
    usage: TokenUsage,
    billing_context: BillingContext = BillingContext.API,
) -> CostBreakdown:
    """Calculate the cost breakdown for model usage.

    Args:
        model: Model identifier (any string; unknown ids price as sonnet)
        usage: Token usage across the four token classes
        billing_context: Resolved billing context for the run

    Returns:
        CostBreakdown with per-class costs, total and cache savings
    """
    rates = PRICING_TABLE.get_rates(model)

    # Each class: (tokens / 1M) * rate
    input_cost = Decimal(usage.input_tokens) / MILLION * rates.input
    output_cost = Decimal(usage.output_tokens) / MILLION * rates.output
    cache_write_cost = Decimal(usage.cache_creation_tokens) / MILLION * rates.cache_write
    cache_read_cost = Decimal(usage.cache_read_tokens) / MILLION * rates.cache_read

    # What cache reads would have cost at full input price, minus what they did cost
    cache_savings = Decimal(usage.cache_read_tokens) / MILLION * rates.input - cache_read_cost

    total_cost = input_cost + output_cost + cache_write_cost + cache_read_cost

    return CostBreakdown(
        input_cost=float(input_cost),
        output_cost=float(output_cost),
        cache_write_cost=float(cache_write_cost),
        cache_read_cost=float(cache_read_cost),
        total_cost=float(total_cost),
        cache_savings=float(cache_savings),
        is_equivalent=is_subscription(billing_context),
    )


def fmt_cost(cost: float) -> str:
    """Format a dollar amount with precision that suits its size."""
    if cost >= 100:
        return f"${cost:.0f}"
    if cost >= 0.01:
        return f"${cost:.2f}"
    if cost >= 0.001:
        return f"${cost:.3f}"
    return f"${cost:.4f}"


def fmt_tokens(count: float) -> str:
    """Format a token count compactly (1.2M, 45K, 3.4K)."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 10_000:
        return f"{count / 1_000:.0f}K"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return f"{int(count):,}"
