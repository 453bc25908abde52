"""Verdict engine - merge whole-document and per-section detection"""

from typing import List, Optional, Sequence

from quill_gateway.domain.models import (
    DetectionScores,
    FinalVerdict,
    Recommendation,
    Section,
    SectionSummary,
    Severity,
)
from quill_gateway.domain.quality import FALLBACK_SCORES, SeverityThresholds, classify_severity


def summarize_sections(sections: Sequence[Section]) -> SectionSummary:
    """
    Average the section scores that came from a real detector run.

    Sections scored from the fallback are left out of the averages but still
    count towards the total, which lowers the success rate. With nothing to
    average, the summary carries the conservative fallback scores.
    """
    scored = [s for s in sections if s.detection_scores is not None and not s.detector_fallback]
    problematic = sum(1 for s in sections if s.severity in (Severity.HIGH, Severity.MEDIUM))
    review = sum(1 for s in sections if s.requires_review)
    cycles = sum(s.refinement_cycles for s in sections)

    if not scored:
        return SectionSummary(
            average_originality=FALLBACK_SCORES.originality,
            average_ai_likelihood=FALLBACK_SCORES.ai_likelihood,
            average_plagiarism=FALLBACK_SCORES.plagiarism,
            total_sections=len(sections),
            scored_sections=0,
            problematic_sections=problematic,
            review_sections=review,
            refinement_cycles=cycles,
        )

    count = len(scored)
    return SectionSummary(
        average_originality=round(sum(s.detection_scores.originality for s in scored) / count),
        average_ai_likelihood=round(sum(s.detection_scores.ai_likelihood for s in scored) / count),
        average_plagiarism=round(sum(s.detection_scores.plagiarism for s in scored) / count),
        total_sections=len(sections),
        scored_sections=count,
        problematic_sections=problematic,
        review_sections=review,
        refinement_cycles=cycles,
    )


def calculate_confidence(
    whole: Optional[DetectionScores],
    summary: SectionSummary,
    tolerance: float = 20.0,
) -> int:
    """
    Confidence in the reconciled scores, 0-100.

    - 50 base
    - +30 when the whole-document pass succeeded
    - +20 scaled by the share of sections with real detector scores
    - -15 when both sources exist and disagree on AI-likelihood by more than `tolerance`
    """
    confidence = 50.0

    if whole is not None:
        confidence += 30

    confidence += summary.success_rate * 20

    if whole is not None and summary.scored_sections > 0:
        if abs(whole.ai_likelihood - summary.average_ai_likelihood) > tolerance:
            confidence -= 15

    return max(0, min(100, round(confidence)))


def calculate_quality_score(
    originality: float,
    ai_likelihood: float,
    plagiarism: float,
    word_count: int,
    adequate_length_words: int = 500,
) -> int:
    """
    Weighted quality score, 0-100.

    Scoring weights:
    - 40%: originality
    - 30%: 100 - AI likelihood
    - 20%: 100 - plagiarism
    - 10%: length adequacy (full marks at `adequate_length_words`)
    """
    quality = originality * 0.4
    quality += (100 - ai_likelihood) * 0.3
    quality += (100 - plagiarism) * 0.2

    if adequate_length_words <= 0 or word_count >= adequate_length_words:
        quality += 10
    else:
        quality += (word_count / adequate_length_words) * 10

    return max(0, min(100, round(quality)))


def build_recommendations(
    originality: float,
    ai_likelihood: float,
    plagiarism: float,
    summary: SectionSummary,
    whole_document_detected: bool,
) -> List[Recommendation]:
    """Deterministic advice derived from which thresholds were crossed"""
    recommendations: List[Recommendation] = []

    if ai_likelihood > 70:
        recommendations.append(Recommendation(
            "ai_detection", "high",
            "Content shows high AI detection scores. Consider manual revision to improve naturalness.",
        ))
    elif ai_likelihood > 50:
        recommendations.append(Recommendation(
            "ai_detection", "medium",
            "Content may benefit from additional human-like refinements.",
        ))

    if plagiarism > 20:
        recommendations.append(Recommendation(
            "plagiarism", "high",
            "High plagiarism detected. Review and rewrite flagged sections.",
        ))
    elif plagiarism > 10:
        recommendations.append(Recommendation(
            "plagiarism", "medium",
            "Some content similarity detected. Consider paraphrasing.",
        ))

    if originality < 70:
        recommendations.append(Recommendation(
            "originality", "high",
            "Content lacks originality. Add unique insights and perspectives.",
        ))

    if summary.total_sections and summary.problematic_sections > summary.total_sections * 0.5:
        recommendations.append(Recommendation(
            "quality", "medium",
            "Multiple sections required refinement. Consider overall content strategy review.",
        ))

    if summary.review_sections:
        recommendations.append(Recommendation(
            "review", "high",
            f"{summary.review_sections} section(s) still scored high after refinement and need manual review.",
        ))

    if not whole_document_detected or summary.scored_sections < summary.total_sections:
        recommendations.append(Recommendation(
            "system", "medium",
            "Detection service was unavailable for part of this document. Scores are estimated; manual review recommended.",
        ))

    if not recommendations:
        recommendations.append(Recommendation(
            "quality", "low",
            "Content meets quality standards. Consider final proofreading.",
        ))

    return recommendations


def build_verdict(
    whole: Optional[DetectionScores],
    sections: Sequence[Section],
    word_count: int,
    thresholds: SeverityThresholds = SeverityThresholds(),
    tolerance: float = 20.0,
    adequate_length_words: int = 500,
) -> FinalVerdict:
    """
    Main entry point: reconcile detection sources into one verdict.

    The whole-document pass is primary; the section average is the fallback
    when that pass is unavailable (`whole` is None).
    """
    summary = summarize_sections(sections)

    if whole is not None:
        originality = whole.originality
        ai_likelihood = whole.ai_likelihood
        plagiarism = whole.plagiarism
    else:
        originality = summary.average_originality
        ai_likelihood = summary.average_ai_likelihood
        plagiarism = summary.average_plagiarism

    primary = DetectionScores(originality=originality, ai_likelihood=ai_likelihood, plagiarism=plagiarism)

    return FinalVerdict(
        originality_score=originality,
        ai_detection_score=ai_likelihood,
        plagiarism_score=plagiarism,
        quality_score=calculate_quality_score(
            originality, ai_likelihood, plagiarism, word_count, adequate_length_words
        ),
        severity=classify_severity(primary, thresholds),
        confidence=calculate_confidence(whole, summary, tolerance),
        recommendations=build_recommendations(
            originality, ai_likelihood, plagiarism, summary, whole is not None
        ),
        whole_document_detected=whole is not None,
        section_summary=summary,
        word_count=word_count,
    )
