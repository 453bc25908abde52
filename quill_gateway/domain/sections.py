"""Section planning - split a target length into weighted sections"""

import math
from decimal import Decimal
from typing import List, Mapping

from quill_gateway.domain.exceptions import InvalidWordCount
from quill_gateway.domain.models import SectionPlan

DEFAULT_WEIGHTS = {"intro": 0.15, "body": 0.70, "conclusion": 0.15}


def plan(
    total_word_count: int,
    weights: Mapping[str, float] | None = None,
    max_section_words: int | None = None,
) -> List[SectionPlan]:
    """
    Split `total_word_count` into sections by role weight.

    Requirements:
    - Each target is floor(total * weight), so targets never sum past the total
    - Weights keep their insertion order (intro, body, conclusion by default)
    - With `max_section_words`, a role whose target exceeds it is split into
      equal parts; the last part absorbs the remainder

    Example:
        plan(1000) -> intro 150, body 700, conclusion 150
        plan(3000, max_section_words=1000)
            -> intro 450, body 700, body 700, body 700, conclusion 450
    """
    if total_word_count is None or total_word_count <= 0:
        raise InvalidWordCount("total_word_count must be positive")

    weights = dict(weights or DEFAULT_WEIGHTS)
    if any(w < 0 for w in weights.values()):
        raise InvalidWordCount("section weights must be non-negative")
    # Decimal(str(w)) keeps 0.15 * 1000 at exactly 150
    weight_sum = sum(Decimal(str(w)) for w in weights.values())
    if weight_sum > 1:
        raise InvalidWordCount(f"section weights sum to {weight_sum}, expected at most 1")

    sections: List[SectionPlan] = []
    for role, weight in weights.items():
        target = math.floor(Decimal(total_word_count) * Decimal(str(weight)))
        for part in _split(target, max_section_words):
            sections.append(SectionPlan(index=len(sections), role=role, target_word_count=part))

    return sections


def _split(target: int, max_section_words: int | None) -> List[int]:
    if not max_section_words or target <= max_section_words:
        return [target]

    num_parts = -(-target // max_section_words)
    base_amount = target // num_parts
    remainder = target % num_parts
    return [base_amount + (remainder if i == num_parts - 1 else 0) for i in range(num_parts)]
