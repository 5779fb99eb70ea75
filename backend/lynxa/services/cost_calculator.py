"""
Server-side cost calculation for gateway usage.

Cost is financial data — it gets its own testable module, and Decimal
everywhere avoids floating-point rounding on money. A usage row's cost is
fixed when the row is written; later price changes never rewrite history.
"""

from decimal import Decimal

# ── Pricing table ───────────────────────────────────────────
# Per-1K-token prices in USD for each served model.
MODEL_PRICING: dict[str, Decimal] = {
    "lynxa-pro": Decimal("0.002"),
    "lynxa-fast": Decimal("0.0005"),
    "lynxa-creative": Decimal("0.003"),
    "lynxa-code": Decimal("0.0025"),
}

DEFAULT_MODEL = "lynxa-pro"

_ONE_THOUSAND = Decimal("1000")


def get_supported_models() -> list[str]:
    """Model names the gateway can price, alphabetically."""
    return sorted(MODEL_PRICING)


def calculate_cost(model_name: str, tokens: int) -> Decimal:
    """
    Calculate the USD cost of `tokens` tokens served by `model_name`.

    Raises:
        ValueError: If model_name is not in the pricing table, or tokens < 0.
    """
    price = MODEL_PRICING.get(model_name)
    if price is None:
        raise ValueError(
            f"Unknown model '{model_name}' "
            f"(expected one of: {', '.join(get_supported_models())})"
        )
    if tokens < 0:
        raise ValueError("tokens must be >= 0")

    return (Decimal(tokens) / _ONE_THOUSAND) * price
