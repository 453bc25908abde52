"""Quality gate - score generated text and decide whether to refine it"""

import asyncio
import dataclasses
import logging
from typing import Protocol

from quill_gateway.config import settings
from quill_gateway.domain.exceptions import DetectorUnavailable
from quill_gateway.domain.models import DetectionScores, QualityAssessment, RefinementStrategy
from quill_gateway.domain.quality import (
    FALLBACK_SCORES,
    Cutoff,
    SeverityThresholds,
    classify_severity,
    refinement_constraints,
    refinement_strategy,
)
from quill_gateway.infrastructure.observability.metrics import detector_fallback_counter

logger = logging.getLogger(__name__)


class Detector(Protocol):
    async def detect(self, text: str) -> DetectionScores: ...


def thresholds_from_settings() -> SeverityThresholds:
    return SeverityThresholds(
        high=Cutoff.from_mapping(settings.severity_high),
        medium=Cutoff.from_mapping(settings.severity_medium),
        low=Cutoff.from_mapping(settings.severity_low),
    )


async def detect_or_none(detector: Detector, text: str, timeout: float) -> DetectionScores | None:
    """Detector scores, or None when the detector failed or timed out"""
    try:
        return await asyncio.wait_for(detector.detect(text), timeout=timeout)
    except (DetectorUnavailable, asyncio.TimeoutError) as e:
        detector_fallback_counter.inc()
        logger.warning(f"Detector unavailable, using fallback scores: {e}", extra={"step": "detect"})
        return None


class QualityGate:
    """Classifies text by detector scores and picks a refinement strategy"""

    def __init__(
        self,
        detector: Detector,
        thresholds: SeverityThresholds | None = None,
        max_cycles: int | None = None,
        call_timeout: float | None = None,
    ):
        self.detector = detector
        self.thresholds = thresholds or thresholds_from_settings()
        self.max_cycles = max_cycles if max_cycles is not None else settings.max_refinement_cycles
        self.call_timeout = call_timeout or settings.detector_call_timeout_seconds

    async def evaluate(self, content: str) -> QualityAssessment:
        """
        Score `content` and decide what to do with it.

        A detector failure never fails the section: the conservative fallback
        scores are used and the assessment is marked `detector_fallback`.
        """
        scores = await detect_or_none(self.detector, content, self.call_timeout)
        fallback = scores is None
        if fallback:
            scores = dataclasses.replace(FALLBACK_SCORES, flagged_spans=[])

        severity = classify_severity(scores, self.thresholds)
        strategy = refinement_strategy(severity)
        recommendations = (
            refinement_constraints(scores, self.thresholds) if strategy is not RefinementStrategy.ACCEPT else []
        )

        return QualityAssessment(
            scores=scores,
            severity=severity,
            refinement_strategy=strategy,
            recommendations=recommendations,
            detector_fallback=fallback,
        )
