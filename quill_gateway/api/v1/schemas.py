"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class GenerateRequest(BaseModel):
    """Request body for POST /v1/generate"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    prompt: str = Field(..., min_length=1, description="Topic or instructions for the document")
    word_count: int = Field(..., ge=100, le=10000, description="Target document length in words")
    style: str = Field("Academic", description="Writing style")
    tone: str = Field("Formal", description="Writing tone")
    tool_type: str = Field("writing", description="Pricing category for the request")
    quality_tier: Literal["standard", "premium"] = "standard"


class SectionSchema(BaseModel):
    """One generated section with its final quality outcome"""

    index: int
    role: str
    target_word_count: int
    content: str
    severity: str
    refinement_cycles: int
    requires_review: bool
    detector_fallback: bool
    originality: Optional[float] = None
    ai_likelihood: Optional[float] = None
    plagiarism: Optional[float] = None


class RecommendationSchema(BaseModel):
    type: str
    severity: str
    message: str


class VerdictSchema(BaseModel):
    """Reconciled whole-document verdict"""

    originality_score: float
    ai_detection_score: float
    plagiarism_score: float
    quality_score: int
    severity: str
    confidence: int
    is_acceptable: bool
    requires_review: bool
    whole_document_detected: bool
    recommendations: List[RecommendationSchema]


class GenerationStatsSchema(BaseModel):
    section_count: int
    refinement_cycles: int
    credits_used: int
    words_requested: int
    elapsed_ms: float
    transaction_id: str
    remaining_credits: int


class GenerateResponse(BaseModel):
    """Response for POST /v1/generate"""

    content: str
    word_count: int
    sections: List[SectionSchema]
    verdict: VerdictSchema
    stats: GenerationStatsSchema


class BalanceResponse(BaseModel):
    """Response for GET /v1/credits/{user_id}"""

    user_id: str
    credit_balance: int
    plan_type: str
    total_credits_used: int
    total_words_used: int


class TransactionItem(BaseModel):
    """Single reservation in history"""

    transaction_id: str
    credits_reserved: int
    words_reserved: int
    tool_type: str
    status: str
    previous_balance: int
    new_balance: int
    created_at: str


class TransactionHistoryResponse(BaseModel):
    """Response for GET /v1/credits/{user_id}/transactions"""

    user_id: str
    transactions: List[TransactionItem]


class UsageResponse(BaseModel):
    """Response for GET /v1/usage/{user_id}"""

    user_id: str
    month_key: str
    plan_type: str
    words_generated: int
    credits_used: int
    request_count: int
    monthly_word_limit: Optional[int] = None
    remaining_words: Optional[int] = None
