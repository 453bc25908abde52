"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class PlanType(str, Enum):
    FREEMIUM = "freemium"
    PRO = "pro"
    CUSTOM = "custom"

    @property
    def is_free_tier(self) -> bool:
        return self is PlanType.FREEMIUM


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Severity(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RefinementStrategy(str, Enum):
    FULL_REGENERATION = "full_regeneration"
    TARGETED_REWRITE = "targeted_rewrite"
    ACCEPT = "accept"


class SagaState(str, Enum):
    VALIDATING = "validating"
    RESERVING = "reserving"
    GENERATING = "generating"
    RECONCILING = "reconciling"
    COMMITTED = "committed"
    COMPENSATING = "compensating"
    FAILED = "failed"


@dataclass
class AccountBalance:
    """Credit balance and lifetime totals for one user"""

    user_id: str
    credit_balance: int
    plan_type: PlanType
    total_credits_used: int
    total_words_used: int
    version: int


@dataclass
class MonthlyUsage:
    """Per-user, per-calendar-month usage counter"""

    user_id: str
    month_key: str
    words_generated: int = 0
    credits_used: int = 0
    request_count: int = 0


@dataclass
class Reservation:
    """Ledger record of one credit reservation"""

    transaction_id: str
    user_id: str
    credits_reserved: int
    words_reserved: int
    tool_type: str
    plan_type: str
    month_key: str
    status: ReservationStatus
    previous_balance: int
    new_balance: int
    timestamp: datetime


@dataclass
class ReservationResult:
    """Outcome of CreditLedger.reserve"""

    transaction_id: str
    credits_reserved: int
    words_reserved: int
    previous_balance: int
    new_balance: int
    replayed: bool = False


@dataclass
class CompensationResult:
    """Outcome of CreditLedger.compensate"""

    transaction_id: str
    restored: bool
    credits_restored: int
    words_restored: int
    new_balance: int


@dataclass
class DetectionScores:
    """Detector output on a 0-100 scale"""

    originality: float
    ai_likelihood: float
    plagiarism: float
    confidence: float = 0.0
    flagged_spans: List[str] = field(default_factory=list)


@dataclass
class QualityAssessment:
    """Quality gate decision for one piece of text"""

    scores: DetectionScores
    severity: Severity
    refinement_strategy: RefinementStrategy
    recommendations: List[str] = field(default_factory=list)
    detector_fallback: bool = False


@dataclass
class SectionPlan:
    """Planned role and length of one section"""

    index: int
    role: str
    target_word_count: int


@dataclass
class Section:
    """Generated section with its final quality outcome"""

    index: int
    role: str
    target_word_count: int
    content: str = ""
    detection_scores: Optional[DetectionScores] = None
    severity: Severity = Severity.MINIMAL
    refinement_cycles: int = 0
    requires_review: bool = False
    detector_fallback: bool = False


@dataclass
class Document:
    """Assembled output: ordered sections plus the combined text"""

    sections: List[Section]
    content: str
    target_word_count: int

    @property
    def refinement_cycles(self) -> int:
        return sum(s.refinement_cycles for s in self.sections)


@dataclass
class Recommendation:
    type: str
    severity: str
    message: str


@dataclass
class SectionSummary:
    """Aggregate of per-section detection used by reconciliation"""

    average_originality: float
    average_ai_likelihood: float
    average_plagiarism: float
    total_sections: int
    scored_sections: int
    problematic_sections: int
    review_sections: int
    refinement_cycles: int

    @property
    def success_rate(self) -> float:
        if self.total_sections == 0:
            return 0.0
        return self.scored_sections / self.total_sections


@dataclass
class FinalVerdict:
    """Reconciled whole-document quality verdict"""

    originality_score: float
    ai_detection_score: float
    plagiarism_score: float
    quality_score: int
    severity: Severity
    confidence: int
    recommendations: List[Recommendation]
    whole_document_detected: bool
    section_summary: SectionSummary
    word_count: int

    @property
    def is_acceptable(self) -> bool:
        return (
            self.ai_detection_score <= 70
            and self.plagiarism_score <= 20
            and self.originality_score >= 70
        )

    @property
    def requires_review(self) -> bool:
        return (
            self.ai_detection_score > 80
            or self.plagiarism_score > 25
            or self.originality_score < 60
        )


@dataclass
class ValidationResult:
    """Plan/quota validator answer"""

    ok: bool
    plan_type: Optional[PlanType] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class GenerationRequest:
    """Input to the orchestrator"""

    user_id: str
    prompt: str
    word_count: int
    style: str = "Academic"
    tone: str = "Formal"
    tool_type: str = "writing"
    quality_tier: str = "standard"
    request_id: Optional[str] = None


@dataclass
class GenerationStats:
    section_count: int
    refinement_cycles: int
    credits_used: int
    words_requested: int
    elapsed_ms: float
    transaction_id: str
    remaining_credits: int


@dataclass
class GenerationResult:
    """Output of the orchestrator"""

    document: Document
    verdict: FinalVerdict
    stats: GenerationStats
    state: SagaState = SagaState.COMMITTED
