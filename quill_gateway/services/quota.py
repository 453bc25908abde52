"""Quota tracker - per-user monthly word and credit counters"""

from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Session

from quill_gateway.config import settings
from quill_gateway.domain.exceptions import MonthlyLimitExceeded
from quill_gateway.domain.models import MonthlyUsage, PlanType
from quill_gateway.infrastructure.database.repositories import MonthlyUsageRepository
from quill_gateway.infrastructure.database.store import AccountStore
from quill_gateway.utils.date_utils import month_key as current_month_key


class QuotaTracker:
    """
    Reads and updates the monthly usage record.

    `get_usage` is a standalone read. `load`, `apply` and `revert` take the
    caller's session so the ledger can run them inside its own transaction.
    """

    def __init__(self, store: AccountStore, free_monthly_word_limit: int | None = None):
        self.store = store
        self.free_monthly_word_limit = (
            free_monthly_word_limit if free_monthly_word_limit is not None else settings.free_monthly_word_limit
        )

    async def get_usage(self, user_id: str, month_key: str | None = None) -> MonthlyUsage:
        key = month_key or current_month_key()
        return await self.store.run_transaction(lambda db: MonthlyUsageRepository(db).get(user_id, key))

    def load(self, db: Session, user_id: str, month_key: str) -> MonthlyUsage:
        return MonthlyUsageRepository(db).get(user_id, month_key)

    def check_monthly_limit(self, usage: MonthlyUsage, plan_type: PlanType, requested_words: int) -> None:
        """
        Raises:
            MonthlyLimitExceeded: free-tier usage plus `requested_words` passes the cap
        """
        if not plan_type.is_free_tier:
            return
        if usage.words_generated + requested_words > self.free_monthly_word_limit:
            raise MonthlyLimitExceeded(
                current=usage.words_generated,
                requested=requested_words,
                limit=self.free_monthly_word_limit,
            )

    def apply(self, db: Session, usage: MonthlyUsage, words: int, credits: int, now: datetime) -> MonthlyUsage:
        usage.words_generated += words
        usage.credits_used += credits
        usage.request_count += 1
        MonthlyUsageRepository(db).save(usage, now)
        return usage

    def revert(self, db: Session, user_id: str, month_key: str, words: int, credits: int, now: datetime) -> MonthlyUsage:
        """Undo one reservation's usage; counters never go below zero"""
        repo = MonthlyUsageRepository(db)
        usage = repo.get(user_id, month_key)
        usage.words_generated = max(0, usage.words_generated - words)
        usage.credits_used = max(0, usage.credits_used - credits)
        usage.request_count = max(0, usage.request_count - 1)
        repo.save(usage, now)
        return usage

    def remaining_words(self, plan_type: PlanType, usage: MonthlyUsage) -> Optional[int]:
        """Words left this month; None when the plan has no monthly cap"""
        if not plan_type.is_free_tier:
            return None
        return max(0, self.free_monthly_word_limit - usage.words_generated)
