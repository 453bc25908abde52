"""Pytest fixtures for testing"""

import asyncio
import os
import tempfile
import threading
import time

# The engine is built at import time, so point it at SQLite first
TEST_DATABASE_PATH = os.path.join(tempfile.gettempdir(), "quill_gateway_test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DATABASE_PATH}"

import pytest
from typing import Callable, Generator, List, Optional
from fastapi.testclient import TestClient

from quill_gateway.api.dependencies import get_ledger, get_orchestrator, get_quota_tracker
from quill_gateway.api.main import create_app
from quill_gateway.domain.models import DetectionScores, MonthlyUsage, PlanType
from quill_gateway.infrastructure.database.models import Base
from quill_gateway.infrastructure.database.repositories import AccountRepository, MonthlyUsageRepository
from quill_gateway.infrastructure.database.session import SessionLocal, engine
from quill_gateway.infrastructure.database.store import AccountStore
from quill_gateway.services.credit_ledger import CreditLedger
from quill_gateway.services.orchestrator import GenerationOrchestrator
from quill_gateway.services.pipeline import CircuitBreaker, GenerationPipeline
from quill_gateway.services.plan_validator import PlanValidator
from quill_gateway.services.quality_gate import QualityGate
from quill_gateway.services.quota import QuotaTracker
from quill_gateway.services.reconciliation import Reconciler
from quill_gateway.utils.date_utils import month_key, utc_now

CLEAN_SCORES = DetectionScores(originality=95, ai_likelihood=10, plagiarism=2, confidence=90)
HIGH_RISK_SCORES = DetectionScores(originality=50, ai_likelihood=90, plagiarism=10, confidence=90)


class FakeGenerator:
    """Returns `target_word_count` distinct-ish words; optional failures and delay"""

    def __init__(self, errors: Optional[List[Exception]] = None, delay: float = 0.0):
        self.errors = list(errors or [])
        self.delay = delay
        self.prompts: List[str] = []
        self.cancelled = 0

    async def generate(self, prompt: str, target_word_count: int, style: str, tone: str) -> str:
        self.prompts.append(prompt)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        if self.errors:
            raise self.errors.pop(0)
        return " ".join(f"insight{i % 50}" for i in range(target_word_count)) + "."


class FakeDetector:
    """Scores from a fixed sequence (last entry repeats), or raises `error`"""

    def __init__(
        self,
        sequence: Optional[List[DetectionScores]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.sequence = list(sequence or [CLEAN_SCORES])
        self.error = error
        self.delay = delay
        self.texts: List[str] = []

    async def detect(self, text: str) -> DetectionScores:
        self.texts.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        scores = self.sequence.pop(0) if len(self.sequence) > 1 else self.sequence[0]
        return DetectionScores(
            originality=scores.originality,
            ai_likelihood=scores.ai_likelihood,
            plagiarism=scores.plagiarism,
            confidence=scores.confidence,
            flagged_spans=list(scores.flagged_spans),
        )


class SlowCommitStore(AccountStore):
    """Real store whose reserve transactions stall on the worker thread before committing"""

    def __init__(self, session_factory, delay: float, slow_steps=("reserve_txn",)):
        super().__init__(session_factory)
        self.delay = delay
        self.slow_steps = set(slow_steps)
        self.slow_started = threading.Event()

    def _run(self, fn):
        if fn.__name__ in self.slow_steps:
            self.slow_started.set()
            time.sleep(self.delay)
        return super()._run(fn)


class FakeUsageReporter:
    def __init__(self):
        self.events = []

    async def record(self, user_id: str, words_generated: int, credits_used: int, kind: str = "writing") -> None:
        self.events.append((user_id, words_generated, credits_used, kind))


def build_pipeline(generator, detector, **kwargs) -> GenerationPipeline:
    """Pipeline with zero backoff so retry paths run instantly"""
    options = dict(max_retries=3, backoff_base=0.0, backoff_jitter=0.0, call_timeout=5.0, parallel=True)
    options.update(kwargs)
    breaker = options.pop("breaker", None) or CircuitBreaker(threshold=5, reset_seconds=300)
    return GenerationPipeline(generator, QualityGate(detector, max_cycles=2, call_timeout=5.0), breaker=breaker, **options)


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """Fresh SQLite schema per test"""
    Base.metadata.create_all(bind=engine)
    try:
        yield AccountStore(SessionLocal)
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_account(store: AccountStore) -> Callable[..., None]:
    def _make(user_id: str, credit_balance: int, plan_type: PlanType = PlanType.FREEMIUM) -> None:
        with SessionLocal.begin() as db:
            AccountRepository(db).create(user_id, credit_balance, plan_type)

    return _make


@pytest.fixture
def seed_usage(store: AccountStore) -> Callable[..., None]:
    def _seed(user_id: str, words_generated: int, credits_used: int = 0) -> None:
        with SessionLocal.begin() as db:
            MonthlyUsageRepository(db).save(
                MonthlyUsage(
                    user_id=user_id,
                    month_key=month_key(),
                    words_generated=words_generated,
                    credits_used=credits_used,
                    request_count=1,
                ),
                utc_now(),
            )

    return _seed


@pytest.fixture
def ledger(store: AccountStore) -> CreditLedger:
    return CreditLedger(store, QuotaTracker(store), backoff_base=0.0, backoff_jitter=0.0)


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def fake_detector() -> FakeDetector:
    return FakeDetector()


@pytest.fixture
def fake_usage_reporter() -> FakeUsageReporter:
    return FakeUsageReporter()


@pytest.fixture
def client(
    store: AccountStore,
    ledger: CreditLedger,
    fake_generator: FakeGenerator,
    fake_detector: FakeDetector,
    fake_usage_reporter: FakeUsageReporter,
) -> TestClient:
    """Create FastAPI test client wired to SQLite and fake providers"""
    app = create_app()
    orchestrator = GenerationOrchestrator(
        validator=PlanValidator(store),
        ledger=ledger,
        pipeline=build_pipeline(fake_generator, fake_detector),
        reconciler=Reconciler(fake_detector, call_timeout=5.0),
        usage_reporter=fake_usage_reporter,
    )

    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_quota_tracker] = lambda: QuotaTracker(store)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return TestClient(app)
