"""Plan/quota validator - reject requests the user's plan does not allow"""

from dataclasses import dataclass
from typing import Dict, Optional

from quill_gateway.config import settings
from quill_gateway.domain.exceptions import UserNotFound
from quill_gateway.domain.models import PlanType, ValidationResult
from quill_gateway.infrastructure.database.store import AccountStore

MIN_WORD_COUNT = 100
MAX_WORD_COUNT = 10_000


@dataclass(frozen=True)
class PlanLimits:
    max_prompt_words: int
    max_output_words: Optional[int]  # None: bounded by credits only


PLAN_LIMITS: Dict[PlanType, PlanLimits] = {
    PlanType.FREEMIUM: PlanLimits(max_prompt_words=500, max_output_words=1000),
    PlanType.PRO: PlanLimits(max_prompt_words=5000, max_output_words=None),
    PlanType.CUSTOM: PlanLimits(max_prompt_words=5000, max_output_words=None),
}

# Codes that mean "your plan does not allow this" rather than "bad input"
PLAN_RESTRICTION_CODES = {"PROMPT_TOO_LONG", "OUTPUT_LIMIT_EXCEEDED"}


class PlanValidator:
    """Checks a request against the account's plan before any credits move"""

    def __init__(self, store: AccountStore):
        self.store = store

    async def validate(
        self,
        user_id: str,
        prompt_length: int,
        requested_word_count: int,
        tool_type: str = "writing",
    ) -> ValidationResult:
        """
        Validate request bounds and plan limits.

        Requirements:
        - 100 <= requested_word_count <= 10,000 on every plan
        - freemium: prompt <= 500 words, output <= 1,000 words per request
        - pro / custom: prompt <= 5,000 words
        - tool_type must be priced

        Args:
            prompt_length: prompt size in words
        """
        if tool_type not in settings.credit_words_per_credit:
            return ValidationResult(
                ok=False,
                reason=f"Unsupported tool type: {tool_type}",
                error_code="UNSUPPORTED_TOOL",
            )

        if requested_word_count < MIN_WORD_COUNT or requested_word_count > MAX_WORD_COUNT:
            return ValidationResult(
                ok=False,
                reason=f"Word count must be between {MIN_WORD_COUNT} and {MAX_WORD_COUNT:,}",
                error_code="INVALID_WORD_COUNT",
            )

        try:
            account = await self.store.get_balance(user_id)
        except UserNotFound:
            return ValidationResult(ok=False, reason=f"No plan found for user {user_id}", error_code="PLAN_NOT_FOUND")

        plan_type = account.plan_type
        limits = PLAN_LIMITS[plan_type]

        if prompt_length > limits.max_prompt_words:
            return ValidationResult(
                ok=False,
                plan_type=plan_type,
                reason=f"Prompt exceeds the {plan_type.value} plan limit of {limits.max_prompt_words} words",
                error_code="PROMPT_TOO_LONG",
            )

        if limits.max_output_words is not None and requested_word_count > limits.max_output_words:
            return ValidationResult(
                ok=False,
                plan_type=plan_type,
                reason=f"Output exceeds the {plan_type.value} plan limit of {limits.max_output_words} words per request",
                error_code="OUTPUT_LIMIT_EXCEEDED",
            )

        return ValidationResult(ok=True, plan_type=plan_type)
