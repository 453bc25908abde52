"""Unit tests for the generation saga"""

import asyncio
import logging
import pytest
from datetime import datetime, timezone
from prometheus_client import REGISTRY

from conftest import CLEAN_SCORES, FakeDetector, FakeGenerator, FakeUsageReporter, build_pipeline
from quill_gateway.domain.exceptions import (
    GenerationError,
    GenerationUnavailable,
    InsufficientCredits,
    LedgerTimeout,
    TransactionNotFound,
    ValidationFailed,
)
from quill_gateway.domain.models import (
    CompensationResult,
    GenerationRequest,
    PlanType,
    Reservation,
    ReservationResult,
    ReservationStatus,
    SagaState,
    ValidationResult,
)
from quill_gateway.services.orchestrator import GenerationOrchestrator
from quill_gateway.services.reconciliation import Reconciler


class FakeValidator:
    def __init__(self, result: ValidationResult | None = None):
        self.result = result or ValidationResult(ok=True, plan_type=PlanType.PRO)

    async def validate(self, user_id, prompt_length, requested_word_count, tool_type="writing"):
        return self.result


class FakeLedger:
    def __init__(self, reserve_error=None, compensate_error=None, late_status=None):
        self.reserve_error = reserve_error
        self.compensate_error = compensate_error
        self.late_status = late_status
        self.reserved = []
        self.compensated = []
        self.committed = []

    async def reserve(self, user_id, requested_work_units, plan_type, tool_type="writing",
                      quality_tier="standard", transaction_id=None):
        if self.reserve_error is not None:
            raise self.reserve_error
        self.reserved.append(transaction_id)
        credits = -(-requested_work_units // 3)
        return ReservationResult(transaction_id, credits, requested_work_units, 1000, 1000 - credits)

    async def compensate(self, user_id, transaction_id, credits_to_restore=None, words_to_restore=None):
        if self.compensate_error is not None:
            raise self.compensate_error
        self.compensated.append(transaction_id)
        return CompensationResult(transaction_id, True, 0, 0, 1000)

    async def commit(self, user_id, transaction_id):
        self.committed.append(transaction_id)

    def credits_for(self, requested_work_units, tool_type, quality_tier="standard"):
        return -(-requested_work_units // 3)

    async def get_reservation(self, user_id, transaction_id):
        if self.late_status is None:
            return None
        return Reservation(
            transaction_id, user_id, 100, 300, "writing", "pro", "2026-10",
            self.late_status, 1000, 900, datetime.now(timezone.utc),
        )


def make_orchestrator(ledger=None, generator=None, validator=None, reporter=None):
    detector = FakeDetector([CLEAN_SCORES])
    return GenerationOrchestrator(
        validator=validator or FakeValidator(),
        ledger=ledger or FakeLedger(),
        pipeline=build_pipeline(generator or FakeGenerator(), detector),
        reconciler=Reconciler(detector, call_timeout=1.0),
        usage_reporter=reporter,
        compensation_timeout=1.0,
    )


def request(word_count: int = 300) -> GenerationRequest:
    return GenerationRequest(user_id="user_1", prompt="The history of printing", word_count=word_count)


async def test_successful_run_commits_and_reports_usage():
    ledger = FakeLedger()
    reporter = FakeUsageReporter()
    orchestrator = make_orchestrator(ledger=ledger, reporter=reporter)

    result = await orchestrator.generate(request(300))
    await orchestrator.drain()

    assert result.state is SagaState.COMMITTED
    assert result.stats.credits_used == 100
    assert result.stats.remaining_credits == 900
    assert result.stats.section_count == 3
    assert result.stats.transaction_id.startswith("txn_")
    assert ledger.committed == [result.stats.transaction_id]
    assert ledger.compensated == []
    assert reporter.events == [("user_1", 300, 100, "writing")]
    assert result.verdict.whole_document_detected is True


async def test_validation_failure_touches_no_credits():
    ledger = FakeLedger()
    validator = FakeValidator(ValidationResult(ok=False, reason="too long", error_code="PROMPT_TOO_LONG"))
    orchestrator = make_orchestrator(ledger=ledger, validator=validator)

    with pytest.raises(ValidationFailed) as exc_info:
        await orchestrator.generate(request())

    assert exc_info.value.error_code == "PROMPT_TOO_LONG"
    assert ledger.reserved == []


async def test_reservation_failure_surfaces_without_compensation():
    ledger = FakeLedger(reserve_error=InsufficientCredits(required=100, available=50))
    orchestrator = make_orchestrator(ledger=ledger)

    with pytest.raises(InsufficientCredits):
        await orchestrator.generate(request())

    assert ledger.compensated == []


async def test_generation_failure_compensates_exactly_once():
    ledger = FakeLedger()
    generator = FakeGenerator(errors=[GenerationUnavailable("bad request", transient=False)])
    orchestrator = make_orchestrator(ledger=ledger, generator=generator)

    with pytest.raises(GenerationError):
        await orchestrator.generate(request())

    assert ledger.compensated == ledger.reserved
    assert len(ledger.compensated) == 1
    assert ledger.committed == []


async def test_failed_compensation_is_logged_as_reconciliation_debt(caplog):
    ledger = FakeLedger(compensate_error=LedgerTimeout("store unavailable"))
    generator = FakeGenerator(errors=[GenerationUnavailable("bad request", transient=False)])
    orchestrator = make_orchestrator(ledger=ledger, generator=generator)
    before = REGISTRY.get_sample_value("quill_reconciliation_debt_total") or 0

    with caplog.at_level(logging.ERROR):
        with pytest.raises(GenerationError):
            await orchestrator.generate(request())

    assert REGISTRY.get_sample_value("quill_reconciliation_debt_total") == before + 1
    assert any("Reconciliation debt" in r.getMessage() for r in caplog.records)


async def test_cancellation_compensates_in_detached_task():
    ledger = FakeLedger()
    orchestrator = make_orchestrator(ledger=ledger, generator=FakeGenerator(delay=10.0))

    task = asyncio.create_task(orchestrator.generate(request()))
    while not ledger.reserved:
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    await orchestrator.drain()

    assert ledger.compensated == ledger.reserved
    assert orchestrator.pending_tasks == 0


async def test_reserve_timeout_undoes_a_reservation_that_may_have_committed():
    ledger = FakeLedger(reserve_error=LedgerTimeout("ledger_reserve did not complete within 30s"))
    orchestrator = make_orchestrator(ledger=ledger)

    with pytest.raises(LedgerTimeout):
        await orchestrator.generate(request())
    await orchestrator.drain()

    assert len(ledger.compensated) == 1
    assert ledger.compensated[0].startswith("txn_")


async def test_reserve_timeout_with_nothing_committed_is_not_debt(caplog):
    ledger = FakeLedger(
        reserve_error=LedgerTimeout("ledger_reserve did not complete within 30s"),
        compensate_error=TransactionNotFound("no such transaction"),
    )
    orchestrator = make_orchestrator(ledger=ledger)
    before = REGISTRY.get_sample_value("quill_reconciliation_debt_total") or 0

    with caplog.at_level(logging.ERROR):
        with pytest.raises(LedgerTimeout):
            await orchestrator.generate(request())
        await orchestrator.drain()

    assert (REGISTRY.get_sample_value("quill_reconciliation_debt_total") or 0) == before
    assert not any("Reconciliation debt" in r.getMessage() for r in caplog.records)


async def test_compensation_that_lands_after_its_deadline_is_not_debt(caplog):
    ledger = FakeLedger(
        compensate_error=LedgerTimeout("ledger_compensate did not complete within 1s"),
        late_status=ReservationStatus.ROLLED_BACK,
    )
    generator = FakeGenerator(errors=[GenerationUnavailable("bad request", transient=False)])
    orchestrator = make_orchestrator(ledger=ledger, generator=generator)
    before = REGISTRY.get_sample_value("quill_reconciliation_debt_total") or 0

    with caplog.at_level(logging.ERROR):
        with pytest.raises(GenerationError):
            await orchestrator.generate(request())

    assert (REGISTRY.get_sample_value("quill_reconciliation_debt_total") or 0) == before
    assert not any("Reconciliation debt" in r.getMessage() for r in caplog.records)
