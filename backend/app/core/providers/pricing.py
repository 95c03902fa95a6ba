############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# pricing.py: Curated per-model token pricing and cost arithmetic
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Fallback token pricing, USD per million tokens.

Used when a model row carries no prices and when suggesting prices for
models discovered through a vendor's model listing.
"""

from typing import Dict, Optional, Tuple

from backend.app.db.models import ProviderType

Price = Tuple[float, float]  # (input, output)

PRICING: Dict[ProviderType, Dict[str, Price]] = {
    ProviderType.OPENAI: {
        "gpt-4": (30.0, 60.0),
        "gpt-4-turbo": (10.0, 30.0),
        "gpt-4o": (5.0, 15.0),
        "gpt-4o-mini": (0.15, 0.6),
        "gpt-3.5-turbo": (0.5, 1.5),
        "gpt-3.5-turbo-16k": (3.0, 4.0),
    },
    ProviderType.ANTHROPIC: {
        "claude-3-5-sonnet": (3.0, 15.0),
        "claude-3-5-haiku": (0.8, 4.0),
        "claude-3-opus": (15.0, 75.0),
        "claude-3-sonnet": (3.0, 15.0),
        "claude-3-haiku": (0.25, 1.25),
    },
    ProviderType.GOOGLE: {
        "gemini-1.5-pro": (3.5, 10.5),
        "gemini-1.5-flash": (0.35, 1.05),
        "gemini-pro": (0.5, 1.5),
    },
}


def lookup_price(provider_type: ProviderType, model_id: str) -> Optional[Price]:
    """Price for the longest known model name contained in ``model_id``."""
    table = PRICING.get(provider_type, {})
    matches = [name for name in table if name in model_id]
    if not matches:
        return None
    return table[max(matches, key=len)]


def calculate_cost(
    input_tokens: int, output_tokens: int, input_price: float, output_price: float
) -> float:
    """Cost in USD for a call given per-million-token prices."""
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price
