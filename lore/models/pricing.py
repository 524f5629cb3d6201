"""Per-model token prices for cost estimates.

Prices are USD per million tokens as (input, output). Models not listed
cost nothing (local models), with a warning for hosted providers.
"""

from __future__ import annotations

import logging
from typing import Dict, Tuple

logger = logging.getLogger(__name__)

MODEL_PRICES: Dict[str, Tuple[float, float]] = {
    "claude-haiku-4-5-20251001": (1.00, 5.00),
    "claude-sonnet-4-5-20250929": (3.00, 15.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
}


def estimate_cost(model_id: str, usage: Dict[str, int], *, warn_unknown: bool = True) -> float:
    """Estimate the USD cost of one call from its token usage."""
    prices = MODEL_PRICES.get(model_id)
    if prices is None:
        if warn_unknown:
            logger.warning("No price for model %s, cost estimate is 0", model_id)
        return 0.0
    input_price, output_price = prices
    input_tokens = usage.get("input_tokens", 0)
    output_tokens = usage.get("output_tokens", 0)
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price
