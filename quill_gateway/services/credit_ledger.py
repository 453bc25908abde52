"""Credit ledger - atomic reserve / commit / compensate against a user balance"""

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, TypeVar
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from quill_gateway.config import settings
from quill_gateway.domain.exceptions import (
    AlreadyRolledBack,
    InsufficientCredits,
    LedgerBusinessError,
    LedgerTimeout,
    StaleBalanceError,
    TooManyConcurrentRequests,
    TransactionNotFound,
    UserNotFound,
)
from quill_gateway.domain.models import (
    AccountBalance,
    CompensationResult,
    PlanType,
    Reservation,
    ReservationResult,
    ReservationStatus,
)
from quill_gateway.domain.pricing import required_credits, words_charged
from quill_gateway.infrastructure.database.repositories import AccountRepository, ReservationRepository
from quill_gateway.infrastructure.database.store import AccountStore
from quill_gateway.infrastructure.observability.metrics import (
    compensation_counter,
    ledger_retry_counter,
    reservation_counter,
)
from quill_gateway.services.quota import QuotaTracker
from quill_gateway.utils.date_utils import month_key, utc_now
from quill_gateway.utils.retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Version conflicts, lock timeouts / disconnects, racing inserts
RETRYABLE_ERRORS = (StaleBalanceError, OperationalError, IntegrityError)


def new_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex}"


class CreditLedger:
    """
    Billing-unit ledger over the account store.

    Every mutation is one store transaction that first compare-and-swaps the
    account row's version, so two writers never both succeed against the
    same balance. Conflicts are retried with backoff under an overall
    deadline; business-rule failures surface immediately.

    The in-flight guard is per ledger instance: the service shares one
    ledger per process.
    """

    def __init__(
        self,
        store: AccountStore,
        quota: QuotaTracker | None = None,
        words_per_credit: Mapping[str, int] | None = None,
        tier_multipliers: Mapping[str, float] | None = None,
        max_request_units: int | None = None,
        max_in_flight_per_user: int | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_jitter: float | None = None,
        timeout_seconds: float | None = None,
    ):
        self.store = store
        self.quota = quota or QuotaTracker(store)
        self.words_per_credit = words_per_credit or settings.credit_words_per_credit
        self.tier_multipliers = tier_multipliers or settings.quality_tier_multipliers
        self.max_request_units = max_request_units or settings.max_request_units
        self.max_in_flight_per_user = max_in_flight_per_user or settings.ledger_max_in_flight_per_user
        self.max_retries = max_retries or settings.ledger_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.ledger_backoff_base
        self.backoff_jitter = backoff_jitter if backoff_jitter is not None else settings.ledger_backoff_jitter
        self.timeout_seconds = timeout_seconds or settings.ledger_timeout_seconds
        self._in_flight: Dict[str, int] = defaultdict(int)

    def credits_for(self, requested_work_units: int, tool_type: str, quality_tier: str = "standard") -> int:
        return required_credits(
            requested_work_units,
            tool_type,
            self.words_per_credit,
            self.tier_multipliers,
            quality_tier,
            self.max_request_units,
        )

    async def reserve(
        self,
        user_id: str,
        requested_work_units: int,
        plan_type: PlanType | str,
        tool_type: str = "writing",
        quality_tier: str = "standard",
        transaction_id: str | None = None,
    ) -> ReservationResult:
        """
        Atomically move credits from available to spent.

        Requirements:
        - Balance must cover the credits at commit time; it never goes negative
        - Free-tier plans must stay within the monthly word cap
        - One reservation record per transaction id: a repeated id returns the
          original result with `replayed=True` and moves nothing

        Raises:
            InsufficientCredits, MonthlyLimitExceeded, UserNotFound,
            TooManyConcurrentRequests, AlreadyRolledBack, LedgerTimeout
        """
        plan_type = PlanType(plan_type)
        credits = self.credits_for(requested_work_units, tool_type, quality_tier)
        words = words_charged(requested_work_units, tool_type)
        # Generated once so every retry writes the same record
        transaction_id = transaction_id or new_transaction_id()

        if self.in_flight(user_id) >= self.max_in_flight_per_user:
            reservation_counter.labels(outcome="too_many_concurrent_requests").inc()
            raise TooManyConcurrentRequests(
                f"User {user_id} already has {self.in_flight(user_id)} reservations in flight"
            )

        def reserve_txn(db: Session) -> ReservationResult:
            reservations = ReservationRepository(db)
            existing = reservations.get(transaction_id)
            if existing is not None:
                return _replay(existing, user_id)

            accounts = AccountRepository(db)
            account = accounts.get(user_id)
            if account is None:
                raise UserNotFound(f"User {user_id} not found")
            if account.credit_balance < credits:
                raise InsufficientCredits(required=credits, available=account.credit_balance)

            now = utc_now()
            key = month_key(now)
            usage = self.quota.load(db, user_id, key)
            self.quota.check_monthly_limit(usage, plan_type, words)

            new_balance = account.credit_balance - credits
            accounts.update_balance(
                account,
                credit_balance=new_balance,
                total_credits_used=account.total_credits_used + credits,
                total_words_used=account.total_words_used + words,
                now=now,
            )
            self.quota.apply(db, usage, words, credits, now)
            reservations.create(
                Reservation(
                    transaction_id=transaction_id,
                    user_id=user_id,
                    credits_reserved=credits,
                    words_reserved=words,
                    tool_type=tool_type,
                    plan_type=plan_type.value,
                    month_key=key,
                    status=ReservationStatus.RESERVED,
                    previous_balance=account.credit_balance,
                    new_balance=new_balance,
                    timestamp=now,
                )
            )
            return ReservationResult(
                transaction_id=transaction_id,
                credits_reserved=credits,
                words_reserved=words,
                previous_balance=account.credit_balance,
                new_balance=new_balance,
            )

        self._in_flight[user_id] += 1
        try:
            result = await self._run(reserve_txn, "ledger_reserve")
        except LedgerBusinessError as e:
            reservation_counter.labels(outcome=e.kind.value).inc()
            logger.info(
                f"Reservation rejected: {e}",
                extra={"user_id": user_id, "transaction_id": transaction_id, "step": "reserve"},
            )
            raise
        finally:
            self._release(user_id)

        reservation_counter.labels(outcome="replayed" if result.replayed else "reserved").inc()
        logger.info(
            "Credits reserved",
            extra={
                "user_id": user_id,
                "transaction_id": transaction_id,
                "step": "reserve",
                "credits_reserved": result.credits_reserved,
                "new_balance": result.new_balance,
                "replayed": result.replayed,
            },
        )
        return result

    async def compensate(
        self,
        user_id: str,
        transaction_id: str,
        credits_to_restore: int | None = None,
        words_to_restore: int | None = None,
    ) -> CompensationResult:
        """
        Reverse a reservation. Amounts default to, and are capped at, what
        was reserved; usage is decremented for the month that was charged.

        Raises:
            TransactionNotFound: no reservation with that id for this user
            AlreadyRolledBack: the reservation was already compensated
            LedgerTimeout: store contention outlasted the deadline
        """

        def compensate_txn(db: Session) -> CompensationResult:
            reservations = ReservationRepository(db)
            reservation = reservations.get(transaction_id)
            if reservation is None or reservation.user_id != user_id:
                raise TransactionNotFound(f"Transaction {transaction_id} not found for user {user_id}")
            if reservation.status is ReservationStatus.ROLLED_BACK:
                raise AlreadyRolledBack(f"Transaction {transaction_id} was already rolled back")

            credits = _capped(credits_to_restore, reservation.credits_reserved)
            words = _capped(words_to_restore, reservation.words_reserved)

            accounts = AccountRepository(db)
            account = accounts.get(user_id)
            if account is None:
                raise UserNotFound(f"User {user_id} not found")

            now = utc_now()
            new_balance = account.credit_balance + credits
            accounts.update_balance(
                account,
                credit_balance=new_balance,
                total_credits_used=max(0, account.total_credits_used - credits),
                total_words_used=max(0, account.total_words_used - words),
                now=now,
            )
            self.quota.revert(db, user_id, reservation.month_key, words, credits, now)
            reservations.set_status(transaction_id, ReservationStatus.ROLLED_BACK, now)
            return CompensationResult(
                transaction_id=transaction_id,
                restored=True,
                credits_restored=credits,
                words_restored=words,
                new_balance=new_balance,
            )

        try:
            result = await self._run(compensate_txn, "ledger_compensate")
        except AlreadyRolledBack:
            compensation_counter.labels(outcome="already_rolled_back").inc()
            raise

        compensation_counter.labels(outcome="restored").inc()
        logger.info(
            "Reservation compensated",
            extra={
                "user_id": user_id,
                "transaction_id": transaction_id,
                "step": "compensate",
                "credits_restored": result.credits_restored,
                "new_balance": result.new_balance,
            },
        )
        return result

    async def commit(self, user_id: str, transaction_id: str) -> Reservation:
        """
        Mark a delivered reservation as committed. Idempotent.

        Raises:
            TransactionNotFound, AlreadyRolledBack
        """

        def commit_txn(db: Session) -> Reservation:
            reservations = ReservationRepository(db)
            reservation = reservations.get(transaction_id)
            if reservation is None or reservation.user_id != user_id:
                raise TransactionNotFound(f"Transaction {transaction_id} not found for user {user_id}")
            if reservation.status is ReservationStatus.ROLLED_BACK:
                raise AlreadyRolledBack(f"Transaction {transaction_id} was already rolled back")
            if reservation.status is ReservationStatus.RESERVED:
                reservations.set_status(transaction_id, ReservationStatus.COMMITTED, utc_now())
                reservation.status = ReservationStatus.COMMITTED
            return reservation

        return await self._run(commit_txn, "ledger_commit")

    async def get_reservation(self, user_id: str, transaction_id: str) -> Reservation | None:
        def read_txn(db: Session) -> Reservation | None:
            reservation = ReservationRepository(db).get(transaction_id)
            if reservation is None or reservation.user_id != user_id:
                return None
            return reservation

        return await self._run(read_txn, "ledger_read")

    async def get_balance(self, user_id: str) -> AccountBalance:
        return await self.store.get_balance(user_id)

    async def list_transactions(self, user_id: str, limit: int = 50) -> List[Reservation]:
        """Most recent reservations first"""

        def list_txn(db: Session) -> List[Reservation]:
            if AccountRepository(db).get(user_id) is None:
                raise UserNotFound(f"User {user_id} not found")
            return ReservationRepository(db).list_by_user(user_id, limit=limit)

        return await self.store.run_transaction(list_txn)

    async def _run(self, fn: Callable[[Session], T], label: str) -> T:
        """
        Run `fn` in a store transaction with retry, bounded by the overall deadline.

        The transaction runs on a worker thread that cancellation cannot stop.
        On timeout or cancellation the attempt in progress is awaited before
        the error propagates, so once this raises no write is still pending
        and the caller can safely read or undo the outcome.
        """
        attempts: List[asyncio.Future] = []

        async def attempt() -> T:
            task = asyncio.ensure_future(self.store.run_transaction(fn))
            attempts.append(task)
            try:
                return await asyncio.shield(task)
            except RETRYABLE_ERRORS:
                ledger_retry_counter.inc()
                raise

        try:
            return await asyncio.wait_for(
                retry_async(
                    attempt,
                    max_attempts=self.max_retries,
                    retry_on=RETRYABLE_ERRORS,
                    base_delay=self.backoff_base,
                    jitter=self.backoff_jitter,
                    label=label,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise LedgerTimeout(f"{label} did not complete within {self.timeout_seconds}s") from e
        except RETRYABLE_ERRORS as e:
            raise LedgerTimeout(f"{label} still contended after {self.max_retries} attempts") from e
        finally:
            if attempts and not attempts[-1].done():
                await _settle(attempts[-1], label)

    def _release(self, user_id: str) -> None:
        self._in_flight[user_id] -= 1
        if self._in_flight[user_id] <= 0:
            del self._in_flight[user_id]

    def in_flight(self, user_id: str) -> int:
        return self._in_flight.get(user_id, 0)


async def _settle(task: asyncio.Future, label: str) -> None:
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        logger.warning(
            f"{label} attempt failed after its caller gave up: {task.exception()!r}",
            extra={"step": label},
        )
    else:
        logger.warning(f"{label} attempt finished after its caller gave up", extra={"step": label})


def _replay(existing: Reservation, user_id: str) -> ReservationResult:
    if existing.user_id != user_id:
        raise TransactionNotFound(f"Transaction {existing.transaction_id} not found for user {user_id}")
    if existing.status is ReservationStatus.ROLLED_BACK:
        raise AlreadyRolledBack(f"Transaction {existing.transaction_id} was already rolled back")
    return ReservationResult(
        transaction_id=existing.transaction_id,
        credits_reserved=existing.credits_reserved,
        words_reserved=existing.words_reserved,
        previous_balance=existing.previous_balance,
        new_balance=existing.new_balance,
        replayed=True,
    )


def _capped(requested: int | None, reserved: int) -> int:
    if requested is None:
        return reserved
    return max(0, min(requested, reserved))
