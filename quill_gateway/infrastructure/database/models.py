"""SQLAlchemy ORM models for the credit ledger"""

import uuid
from sqlalchemy import Column, String, BigInteger, Integer, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class UserAccount(Base):
    """Credit balance per user; `version` is the optimistic-concurrency token"""

    __tablename__ = "user_account"

    user_id = Column(Text, primary_key=True)
    credit_balance = Column(BigInteger, nullable=False, default=0)
    plan_type = Column(Text, nullable=False, default="freemium")
    total_credits_used = Column(BigInteger, nullable=False, default=0)
    total_words_used = Column(BigInteger, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class MonthlyUsageRecord(Base):
    """One usage counter per (user, calendar month)"""

    __tablename__ = "monthly_usage"
    __table_args__ = (UniqueConstraint("user_id", "month_key", name="uq_monthly_usage_user_month"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(Text, nullable=False, index=True)
    month_key = Column(String(7), nullable=False)
    words_generated = Column(BigInteger, nullable=False, default=0)
    credits_used = Column(BigInteger, nullable=False, default=0)
    request_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class CreditReservation(Base):
    """Reservation record keyed by the caller-generated transaction id"""

    __tablename__ = "credit_reservation"

    transaction_id = Column(Text, primary_key=True)
    user_id = Column(Text, nullable=False, index=True)
    credits_reserved = Column(BigInteger, nullable=False)
    words_reserved = Column(BigInteger, nullable=False)
    tool_type = Column(Text, nullable=False)
    plan_type = Column(Text, nullable=False)
    month_key = Column(String(7), nullable=False)
    status = Column(Text, nullable=False, default="reserved")
    previous_balance = Column(BigInteger, nullable=False)
    new_balance = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    committed_at = Column(DateTime(timezone=True), nullable=True)
    rolled_back_at = Column(DateTime(timezone=True), nullable=True)
