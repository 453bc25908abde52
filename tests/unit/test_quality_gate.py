"""Unit tests for the quality gate"""

from conftest import CLEAN_SCORES, HIGH_RISK_SCORES, FakeDetector
from quill_gateway.domain.exceptions import DetectorUnavailable
from quill_gateway.domain.models import DetectionScores, RefinementStrategy, Severity
from quill_gateway.services.quality_gate import QualityGate


async def test_clean_text_is_accepted():
    gate = QualityGate(FakeDetector([CLEAN_SCORES]), max_cycles=2, call_timeout=1.0)

    assessment = await gate.evaluate("some text")

    assert assessment.severity is Severity.MINIMAL
    assert assessment.refinement_strategy is RefinementStrategy.ACCEPT
    assert assessment.recommendations == []
    assert assessment.detector_fallback is False


async def test_high_risk_text_needs_regeneration_with_constraints():
    gate = QualityGate(FakeDetector([HIGH_RISK_SCORES]), max_cycles=2, call_timeout=1.0)

    assessment = await gate.evaluate("some text")

    assert assessment.severity is Severity.HIGH
    assert assessment.refinement_strategy is RefinementStrategy.FULL_REGENERATION
    assert assessment.recommendations


async def test_medium_risk_text_gets_targeted_rewrite():
    medium = DetectionScores(originality=85, ai_likelihood=65, plagiarism=5, flagged_spans=["a stock phrase"])
    gate = QualityGate(FakeDetector([medium]), max_cycles=2, call_timeout=1.0)

    assessment = await gate.evaluate("some text")

    assert assessment.refinement_strategy is RefinementStrategy.TARGETED_REWRITE
    assert assessment.scores.flagged_spans == ["a stock phrase"]


async def test_detector_failure_uses_fallback_scores():
    gate = QualityGate(FakeDetector(error=DetectorUnavailable("down")), max_cycles=2, call_timeout=1.0)

    assessment = await gate.evaluate("some text")

    assert assessment.detector_fallback is True
    assert assessment.scores.originality == 100
    assert assessment.scores.ai_likelihood == 15
    assert assessment.scores.plagiarism == 0
    assert assessment.scores.confidence == 50
    assert assessment.refinement_strategy is RefinementStrategy.ACCEPT


async def test_detector_timeout_uses_fallback_scores():
    gate = QualityGate(FakeDetector([HIGH_RISK_SCORES], delay=1.0), max_cycles=2, call_timeout=0.05)

    assessment = await gate.evaluate("some text")

    assert assessment.detector_fallback is True
    assert assessment.severity is Severity.MINIMAL


def test_max_cycles_exposed():
    assert QualityGate(FakeDetector(), max_cycles=4).max_cycles == 4
