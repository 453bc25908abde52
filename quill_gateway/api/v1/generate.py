"""POST /v1/generate - quality-gated document generation endpoint"""

from fastapi import APIRouter, Depends, Request

from quill_gateway.api.v1.schemas import (
    GenerateRequest,
    GenerateResponse,
    GenerationStatsSchema,
    RecommendationSchema,
    SectionSchema,
    VerdictSchema,
)
from quill_gateway.api.dependencies import get_orchestrator, get_request_id
from quill_gateway.api.errors import to_http_exception
from quill_gateway.domain.exceptions import DomainException
from quill_gateway.domain.models import GenerationRequest, GenerationResult
from quill_gateway.services.orchestrator import GenerationOrchestrator

router = APIRouter()


@router.post("/generate", response_model=GenerateResponse)
async def generate_document(
    request_body: GenerateRequest,
    request: Request,
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Generate a document with credit reservation and quality gating.

    Flow:
    1. Validate the request against the user's plan
    2. Reserve credits for the requested length
    3. Generate sections, refining those the detector flags
    4. Reconcile section and whole-document detection into a verdict
    5. Commit the reservation (or compensate it on failure)
    """
    request_id = get_request_id(request)

    try:
        result = await orchestrator.generate(
            GenerationRequest(
                user_id=request_body.user_id,
                prompt=request_body.prompt,
                word_count=request_body.word_count,
                style=request_body.style,
                tone=request_body.tone,
                tool_type=request_body.tool_type,
                quality_tier=request_body.quality_tier,
                request_id=request_id,
            )
        )
    except DomainException as e:
        raise to_http_exception(e, request_id)

    return _to_response(result)


def _to_response(result: GenerationResult) -> GenerateResponse:
    verdict = result.verdict
    return GenerateResponse(
        content=result.document.content,
        word_count=verdict.word_count,
        sections=[
            SectionSchema(
                index=s.index,
                role=s.role,
                target_word_count=s.target_word_count,
                content=s.content,
                severity=s.severity.value,
                refinement_cycles=s.refinement_cycles,
                requires_review=s.requires_review,
                detector_fallback=s.detector_fallback,
                originality=s.detection_scores.originality if s.detection_scores else None,
                ai_likelihood=s.detection_scores.ai_likelihood if s.detection_scores else None,
                plagiarism=s.detection_scores.plagiarism if s.detection_scores else None,
            )
            for s in result.document.sections
        ],
        verdict=VerdictSchema(
            originality_score=verdict.originality_score,
            ai_detection_score=verdict.ai_detection_score,
            plagiarism_score=verdict.plagiarism_score,
            quality_score=verdict.quality_score,
            severity=verdict.severity.value,
            confidence=verdict.confidence,
            is_acceptable=verdict.is_acceptable,
            requires_review=verdict.requires_review,
            whole_document_detected=verdict.whole_document_detected,
            recommendations=[
                RecommendationSchema(type=r.type, severity=r.severity, message=r.message)
                for r in verdict.recommendations
            ],
        ),
        stats=GenerationStatsSchema(
            section_count=result.stats.section_count,
            refinement_cycles=result.stats.refinement_cycles,
            credits_used=result.stats.credits_used,
            words_requested=result.stats.words_requested,
            elapsed_ms=result.stats.elapsed_ms,
            transaction_id=result.stats.transaction_id,
            remaining_credits=result.stats.remaining_credits,
        ),
    )
