"""Dependency injection for FastAPI endpoints"""

from functools import lru_cache
from fastapi import Request
from quill_gateway.infrastructure.clients.detector import DetectorClient
from quill_gateway.infrastructure.clients.generator import GeneratorClient
from quill_gateway.infrastructure.clients.usage_reporter import UsageReporter
from quill_gateway.infrastructure.database.session import SessionLocal
from quill_gateway.infrastructure.database.store import AccountStore
from quill_gateway.services.credit_ledger import CreditLedger
from quill_gateway.services.orchestrator import GenerationOrchestrator
from quill_gateway.services.pipeline import GenerationPipeline
from quill_gateway.services.plan_validator import PlanValidator
from quill_gateway.services.quality_gate import QualityGate
from quill_gateway.services.quota import QuotaTracker
from quill_gateway.services.reconciliation import Reconciler


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_store() -> AccountStore:
    """Provide the account store over the configured database"""
    return AccountStore(SessionLocal)


def get_quota_tracker() -> QuotaTracker:
    return QuotaTracker(get_store())


# Process-wide singletons: the ledger holds the in-flight guard and the
# pipeline holds the circuit breaker, both of which must outlive a request


@lru_cache
def get_ledger() -> CreditLedger:
    """Provide the shared credit ledger"""
    store = get_store()
    return CreditLedger(store, QuotaTracker(store))


@lru_cache
def get_orchestrator() -> GenerationOrchestrator:
    """Provide the shared generation orchestrator"""
    detector = DetectorClient()
    return GenerationOrchestrator(
        validator=PlanValidator(get_store()),
        ledger=get_ledger(),
        pipeline=GenerationPipeline(GeneratorClient(), QualityGate(detector)),
        reconciler=Reconciler(detector),
        usage_reporter=UsageReporter(),
    )
