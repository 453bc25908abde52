"""Data access layer for ledger entities"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session
from quill_gateway.infrastructure.database.models import UserAccount, MonthlyUsageRecord, CreditReservation
from quill_gateway.domain.exceptions import StaleBalanceError
from quill_gateway.domain.models import (
    AccountBalance,
    MonthlyUsage,
    PlanType,
    Reservation,
    ReservationStatus,
)


class AccountRepository:
    """Repository for user credit accounts"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[AccountBalance]:
        row = self.db.get(UserAccount, user_id, populate_existing=True)
        if row is None:
            return None
        return AccountBalance(
            user_id=row.user_id,
            credit_balance=row.credit_balance,
            plan_type=PlanType(row.plan_type),
            total_credits_used=row.total_credits_used,
            total_words_used=row.total_words_used,
            version=row.version,
        )

    def create(self, user_id: str, credit_balance: int, plan_type: PlanType = PlanType.FREEMIUM) -> UserAccount:
        """Open an account (used by provisioning and tests)"""
        account = UserAccount(
            user_id=user_id,
            credit_balance=credit_balance,
            plan_type=plan_type.value,
            total_credits_used=0,
            total_words_used=0,
            version=1,
        )
        self.db.add(account)
        self.db.flush()
        return account

    def update_balance(
        self,
        account: AccountBalance,
        credit_balance: int,
        total_credits_used: int,
        total_words_used: int,
        now: datetime,
    ) -> None:
        """
        Compare-and-swap on `version`.

        Raises:
            StaleBalanceError: another transaction changed the account first
        """
        result = self.db.execute(
            update(UserAccount)
            .where(UserAccount.user_id == account.user_id, UserAccount.version == account.version)
            .values(
                credit_balance=credit_balance,
                total_credits_used=total_credits_used,
                total_words_used=total_words_used,
                version=account.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleBalanceError(f"Account {account.user_id} changed during transaction")


class MonthlyUsageRepository:
    """Repository for monthly usage counters"""

    def __init__(self, db: Session):
        self.db = db

    def _row(self, user_id: str, month_key: str) -> Optional[MonthlyUsageRecord]:
        return (
            self.db.query(MonthlyUsageRecord)
            .populate_existing()
            .filter(MonthlyUsageRecord.user_id == user_id, MonthlyUsageRecord.month_key == month_key)
            .first()
        )

    def get(self, user_id: str, month_key: str) -> MonthlyUsage:
        """Usage for the month; zeros when no record exists yet"""
        row = self._row(user_id, month_key)
        if row is None:
            return MonthlyUsage(user_id=user_id, month_key=month_key)
        return MonthlyUsage(
            user_id=user_id,
            month_key=month_key,
            words_generated=row.words_generated,
            credits_used=row.credits_used,
            request_count=row.request_count,
        )

    def save(self, usage: MonthlyUsage, now: datetime) -> None:
        """Upsert the counter (created lazily on first use)"""
        row = self._row(usage.user_id, usage.month_key)
        if row is None:
            row = MonthlyUsageRecord(user_id=usage.user_id, month_key=usage.month_key)
            self.db.add(row)
        row.words_generated = usage.words_generated
        row.credits_used = usage.credits_used
        row.request_count = usage.request_count
        row.updated_at = now
        self.db.flush()


class ReservationRepository:
    """Repository for credit reservations"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, transaction_id: str) -> Optional[Reservation]:
        row = self.db.get(CreditReservation, transaction_id, populate_existing=True)
        return _to_domain(row) if row is not None else None

    def create(self, reservation: Reservation) -> None:
        self.db.add(
            CreditReservation(
                transaction_id=reservation.transaction_id,
                user_id=reservation.user_id,
                credits_reserved=reservation.credits_reserved,
                words_reserved=reservation.words_reserved,
                tool_type=reservation.tool_type,
                plan_type=reservation.plan_type,
                month_key=reservation.month_key,
                status=reservation.status.value,
                previous_balance=reservation.previous_balance,
                new_balance=reservation.new_balance,
                created_at=reservation.timestamp,
            )
        )
        self.db.flush()  # Surface duplicate ids inside the transaction

    def set_status(self, transaction_id: str, status: ReservationStatus, now: datetime) -> None:
        row = self.db.get(CreditReservation, transaction_id)
        row.status = status.value
        if status is ReservationStatus.COMMITTED:
            row.committed_at = now
        elif status is ReservationStatus.ROLLED_BACK:
            row.rolled_back_at = now
        self.db.flush()

    def list_by_user(self, user_id: str, limit: int = 50) -> List[Reservation]:
        """Most recent reservations first"""
        rows = (
            self.db.query(CreditReservation)
            .filter(CreditReservation.user_id == user_id)
            .order_by(CreditReservation.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_to_domain(row) for row in rows]


def _to_domain(row: CreditReservation) -> Reservation:
    return Reservation(
        transaction_id=row.transaction_id,
        user_id=row.user_id,
        credits_reserved=row.credits_reserved,
        words_reserved=row.words_reserved,
        tool_type=row.tool_type,
        plan_type=row.plan_type,
        month_key=row.month_key,
        status=ReservationStatus(row.status),
        previous_balance=row.previous_balance,
        new_balance=row.new_balance,
        timestamp=row.created_at,
    )
