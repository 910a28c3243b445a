"""
Pricing calculations.

Maps language-model token usage to a monetary cost.
"""

from decimal import Decimal
from typing import Optional, Union

# Flat illustrative rate in USD per 1K tokens
DEFAULT_PRICE_PER_1K_TOKENS = 0.01


def calculate_cost(
    tokens_used: Optional[int],
    price_per_1k_tokens: Union[float, Decimal] = DEFAULT_PRICE_PER_1K_TOKENS,
) -> float:
    """Calculate the cost of an operation from its token usage.

    The computation is exact (no rounding), so cost is linear in tokens:
    cost(2000) == 2 * cost(1000). Missing or negative token counts are
    priced as zero; the function never raises for those inputs.

    Args:
        tokens_used: Tokens consumed by the operation
        price_per_1k_tokens: Unit price in USD per 1000 tokens

    Returns:
        Cost in USD
    """
    if not tokens_used or tokens_used < 0:
        return 0.0

    # str() keeps float rates like 0.01 exact in Decimal
    price = Decimal(str(price_per_1k_tokens))
    cost = (Decimal(int(tokens_used)) / Decimal("1000")) * price
    return float(cost)
