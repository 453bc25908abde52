"""Credit pricing - the single table converting requested words into credits"""

import math
from typing import Mapping

from quill_gateway.domain.exceptions import InvalidWordCount

DEFAULT_TOOL_TYPE = "writing"


def required_credits(
    requested_units: int,
    tool_type: str,
    words_per_credit: Mapping[str, int],
    tier_multipliers: Mapping[str, float],
    quality_tier: str = "standard",
    max_units: int = 100_000,
) -> int:
    """
    Credits needed for `requested_units` words of work.

    ceil(units / words_per_credit[tool] * tier_multiplier)

    Examples (default table):
        300 words, writing (1 credit / 3 words)  -> 100 credits
        300 words, writing, premium (x2)         -> 200 credits
        1000 words, detector (1 credit / 10)     -> 100 credits

    Unknown tools are priced as writing, unknown tiers as 1.0.
    """
    if requested_units is None or requested_units <= 0:
        raise InvalidWordCount("Invalid amount for credit calculation")
    if requested_units > max_units:
        raise InvalidWordCount(f"Request amount exceeds maximum limit ({max_units:,})")

    ratio = words_per_credit.get(tool_type) or words_per_credit[DEFAULT_TOOL_TYPE]
    multiplier = tier_multipliers.get(quality_tier, 1.0)

    # Integer path first so exact multiples never pick up float error
    if multiplier == 1.0:
        return -(-requested_units // ratio)
    return math.ceil(requested_units * multiplier / ratio)


def words_charged(requested_units: int, tool_type: str) -> int:
    """Words counted against monthly usage; detector scans consume credits only"""
    return 0 if tool_type == "detector" else requested_units
