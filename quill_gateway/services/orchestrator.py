"""Orchestrator - saga controller for one generation request"""

import asyncio
import logging
import time
import uuid
from typing import Optional, Set, Tuple

from quill_gateway.config import settings
from quill_gateway.domain.exceptions import (
    AlreadyRolledBack,
    DomainException,
    GenerationError,
    LedgerTimeout,
    TransactionNotFound,
    UsageReportError,
    ValidationFailed,
)
from quill_gateway.domain.models import (
    GenerationRequest,
    GenerationResult,
    GenerationStats,
    ReservationResult,
    ReservationStatus,
    SagaState,
)
from quill_gateway.domain.pricing import words_charged
from quill_gateway.infrastructure.clients.usage_reporter import UsageReporter
from quill_gateway.infrastructure.observability.logging import log_generation, log_reconciliation_debt
from quill_gateway.infrastructure.observability.metrics import (
    compensation_counter,
    generation_counter,
    reconciliation_debt_counter,
    record_generation,
)
from quill_gateway.services.credit_ledger import CreditLedger, new_transaction_id
from quill_gateway.services.pipeline import GenerationPipeline
from quill_gateway.services.plan_validator import PlanValidator
from quill_gateway.services.reconciliation import Reconciler
from quill_gateway.utils.text_utils import count_words

logger = logging.getLogger(__name__)


class GenerationOrchestrator:
    """
    validating -> reserving -> generating -> reconciling -> committed

    Any failure after the reservation compensates exactly once before the
    error surfaces. Compensation runs in its own task so it finishes even
    when the request that started it is cancelled.
    """

    def __init__(
        self,
        validator: PlanValidator,
        ledger: CreditLedger,
        pipeline: GenerationPipeline,
        reconciler: Reconciler,
        usage_reporter: Optional[UsageReporter] = None,
        compensation_timeout: float | None = None,
    ):
        self.validator = validator
        self.ledger = ledger
        self.pipeline = pipeline
        self.reconciler = reconciler
        self.usage_reporter = usage_reporter
        self.compensation_timeout = compensation_timeout or settings.compensation_timeout_seconds
        # Strong references so detached tasks are not garbage-collected mid-flight
        self._background_tasks: Set[asyncio.Task] = set()

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Run the full saga for one request.

        Raises:
            ValidationFailed: rejected before credits were touched
            InsufficientCredits, MonthlyLimitExceeded, TooManyConcurrentRequests,
            UserNotFound: reservation failed, nothing to undo
            LedgerTimeout: reservation outcome unknown; undone if it committed
            GenerationError: generation or reconciliation failed; credits were compensated
        """
        start_time = time.time()
        request_id = request.request_id or str(uuid.uuid4())
        log_extra = {"request_id": request_id, "user_id": request.user_id}

        self._transition(SagaState.VALIDATING, log_extra)
        validation = await self.validator.validate(
            request.user_id,
            count_words(request.prompt),
            request.word_count,
            request.tool_type,
        )
        if not validation.ok:
            generation_counter.labels(outcome="validation_failed").inc()
            raise ValidationFailed(validation.reason, validation.error_code)

        self._transition(SagaState.RESERVING, log_extra)
        transaction_id = new_transaction_id()
        log_extra["transaction_id"] = transaction_id
        try:
            reservation = await self.ledger.reserve(
                request.user_id,
                request.word_count,
                validation.plan_type,
                request.tool_type,
                request.quality_tier,
                transaction_id=transaction_id,
            )
        except LedgerTimeout as e:
            # The reserve may have committed before the deadline was hit
            generation_counter.labels(outcome="reservation_failed").inc()
            self._transition(SagaState.COMPENSATING, log_extra)
            await asyncio.shield(
                self._start_compensation(
                    request.user_id, transaction_id, str(e), *self._reserve_amounts(request), missing_ok=True
                )
            )
            raise
        except asyncio.CancelledError:
            self._transition(SagaState.COMPENSATING, log_extra)
            self._start_compensation(
                request.user_id,
                transaction_id,
                "request cancelled during reservation",
                *self._reserve_amounts(request),
                missing_ok=True,
            )
            raise
        except DomainException:
            generation_counter.labels(outcome="reservation_failed").inc()
            raise

        try:
            self._transition(SagaState.GENERATING, log_extra)
            document = await self.pipeline.generate(
                request.prompt,
                request.word_count,
                request.style,
                request.tone,
                validation.plan_type,
            )

            self._transition(SagaState.RECONCILING, log_extra)
            verdict = await self.reconciler.reconcile(document)

        except asyncio.CancelledError:
            self._transition(SagaState.COMPENSATING, log_extra)
            self._start_compensation(
                request.user_id,
                transaction_id,
                "request cancelled",
                reservation.credits_reserved,
                reservation.words_reserved,
            )
            raise

        except Exception as e:
            self._transition(SagaState.COMPENSATING, log_extra)
            generation_counter.labels(outcome="failed").inc()
            logger.error(f"Generation failed: {e}", extra={**log_extra, "step": "generate"})
            await asyncio.shield(self._start_compensation(
                request.user_id,
                transaction_id,
                str(e),
                reservation.credits_reserved,
                reservation.words_reserved,
            ))
            self._transition(SagaState.FAILED, log_extra)
            if isinstance(e, GenerationError):
                raise
            raise GenerationError(f"Generation failed: {e}") from e

        await self._commit(request.user_id, transaction_id, log_extra)
        self._transition(SagaState.COMMITTED, log_extra)

        if self.usage_reporter is not None:
            self._spawn(self._report_usage(request, reservation, log_extra))

        duration_ms = (time.time() - start_time) * 1000
        record_generation(verdict.quality_score)
        log_generation(
            request_id,
            request.user_id,
            transaction_id,
            reservation.credits_reserved,
            len(document.sections),
            document.refinement_cycles,
            verdict.quality_score,
            verdict.requires_review,
            duration_ms,
        )

        return GenerationResult(
            document=document,
            verdict=verdict,
            stats=GenerationStats(
                section_count=len(document.sections),
                refinement_cycles=document.refinement_cycles,
                credits_used=reservation.credits_reserved,
                words_requested=request.word_count,
                elapsed_ms=duration_ms,
                transaction_id=transaction_id,
                remaining_credits=reservation.new_balance,
            ),
            state=SagaState.COMMITTED,
        )

    async def drain(self) -> None:
        """Wait for detached compensations and usage reports (shutdown, tests)"""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @property
    def pending_tasks(self) -> int:
        return len(self._background_tasks)

    def _start_compensation(
        self,
        user_id: str,
        transaction_id: str,
        reason: str,
        credits: int,
        words: int,
        missing_ok: bool = False,
    ) -> asyncio.Task:
        return self._spawn(self._compensate(user_id, transaction_id, reason, credits, words, missing_ok))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    def _reserve_amounts(self, request: GenerationRequest) -> Tuple[int, int]:
        credits = self.ledger.credits_for(request.word_count, request.tool_type, request.quality_tier)
        return credits, words_charged(request.word_count, request.tool_type)

    async def _compensate(
        self,
        user_id: str,
        transaction_id: str,
        reason: str,
        credits: int,
        words: int,
        missing_ok: bool = False,
    ) -> bool:
        """
        Restore the reservation. Failure becomes reconciliation debt:
        logged and counted for operators, never raised to the user.

        `missing_ok` is set when the reserve itself did not report back, so
        there may be no record to undo.
        """
        log_extra = {"user_id": user_id, "transaction_id": transaction_id, "step": "compensate"}
        try:
            await asyncio.wait_for(
                self.ledger.compensate(user_id, transaction_id),
                timeout=self.compensation_timeout,
            )
            return True
        except AlreadyRolledBack:
            return True
        except TransactionNotFound:
            if missing_ok:
                logger.info("Reservation never committed, nothing to compensate", extra=log_extra)
                return True
            error = f"{reason}; no reservation {transaction_id} to compensate"
        except Exception as e:
            error = f"{reason}; compensation error: {e!r}"

        # A compensation that timed out may still have committed
        if await self._rolled_back(user_id, transaction_id, log_extra):
            logger.warning("Compensation completed after its deadline", extra=log_extra)
            return True

        compensation_counter.labels(outcome="failed").inc()
        reconciliation_debt_counter.inc()
        log_reconciliation_debt(user_id, transaction_id, credits, words, error)
        return False

    async def _rolled_back(self, user_id: str, transaction_id: str, log_extra: dict) -> bool:
        try:
            reservation = await self.ledger.get_reservation(user_id, transaction_id)
        except Exception as e:
            logger.warning(f"Could not re-read reservation status: {e!r}", extra=log_extra)
            return False
        return reservation is not None and reservation.status is ReservationStatus.ROLLED_BACK

    async def _commit(self, user_id: str, transaction_id: str, log_extra: dict) -> None:
        try:
            await self.ledger.commit(user_id, transaction_id)
        except DomainException as e:
            logger.error(
                f"Failed to mark reservation committed: {e}",
                extra={**log_extra, "step": "commit"},
            )

    async def _report_usage(self, request: GenerationRequest, reservation: ReservationResult, log_extra: dict) -> None:
        try:
            await self.usage_reporter.record(
                request.user_id,
                reservation.words_reserved,
                reservation.credits_reserved,
                request.tool_type,
            )
        except UsageReportError as e:
            logger.error(f"Usage report failed: {e}", extra={**log_extra, "step": "report_usage"})

    @staticmethod
    def _transition(state: SagaState, log_extra: dict) -> None:
        logger.debug(f"Saga state: {state.value}", extra={**log_extra, "step": state.value})
