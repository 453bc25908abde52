"""Unit tests for the generation pipeline and circuit breaker"""

import asyncio
import pytest

from conftest import CLEAN_SCORES, HIGH_RISK_SCORES, FakeDetector, FakeGenerator, build_pipeline
from quill_gateway.domain.exceptions import DetectorUnavailable, GenerationError, GenerationUnavailable
from quill_gateway.domain.models import DetectionScores, PlanType, Severity
from quill_gateway.services.pipeline import CircuitBreaker, CircuitState


async def test_generates_sections_in_order():
    generator = FakeGenerator()
    pipeline = build_pipeline(generator, FakeDetector([CLEAN_SCORES]))

    document = await pipeline.generate("Climate policy", 1000, "Academic", "Formal")

    assert [s.role for s in document.sections] == ["intro", "body", "conclusion"]
    assert [s.target_word_count for s in document.sections] == [150, 700, 150]
    assert document.content == "\n\n".join(s.content for s in document.sections)
    assert document.target_word_count == 1000
    assert len(generator.prompts) == 3
    assert all(s.refinement_cycles == 0 for s in document.sections)


async def test_plan_chunk_limit_applies():
    pipeline = build_pipeline(FakeGenerator(), FakeDetector(), chunk_limits={"freemium": 1000})

    document = await pipeline.generate("Topic", 3000, plan_type=PlanType.FREEMIUM)

    assert [s.role for s in document.sections] == ["intro", "body", "body", "body", "conclusion"]


async def test_high_severity_refines_up_to_max_cycles_then_flags_review():
    generator = FakeGenerator()
    detector = FakeDetector([HIGH_RISK_SCORES])
    pipeline = build_pipeline(generator, detector)

    document = await pipeline.generate("Topic", 1000)

    assert all(s.refinement_cycles == 2 for s in document.sections)
    assert all(s.requires_review for s in document.sections)
    assert all(s.severity is Severity.HIGH for s in document.sections)
    # One initial call plus two refinements per section
    assert len(generator.prompts) == 9
    assert sum("Constraints:" in p for p in generator.prompts) == 6


async def test_medium_severity_rewrites_flagged_spans_only():
    medium = DetectionScores(originality=85, ai_likelihood=65, plagiarism=5, flagged_spans=["In conclusion, it is clear"])
    generator = FakeGenerator()
    pipeline = build_pipeline(generator, FakeDetector([medium, CLEAN_SCORES]), parallel=False)

    document = await pipeline.generate("Topic", 1000)

    assert document.sections[0].refinement_cycles == 1
    assert document.sections[0].requires_review is False
    assert generator.prompts[1].startswith("Rewrite only these passages")
    assert "In conclusion, it is clear" in generator.prompts[1]


async def test_sequential_mode_passes_context_forward():
    generator = FakeGenerator()
    pipeline = build_pipeline(generator, FakeDetector(), parallel=False)

    await pipeline.generate("Topic", 1000)

    assert "Previous content ended with" not in generator.prompts[0]
    assert "Previous content ended with" in generator.prompts[1]
    assert "Previous content ended with" in generator.prompts[2]


async def test_detector_outage_does_not_fail_generation():
    pipeline = build_pipeline(FakeGenerator(), FakeDetector(error=DetectorUnavailable("down")))

    document = await pipeline.generate("Topic", 1000)

    assert all(s.detector_fallback for s in document.sections)
    assert all(s.refinement_cycles == 0 for s in document.sections)


async def test_transient_generator_failure_is_retried():
    generator = FakeGenerator(errors=[GenerationUnavailable("503")])
    pipeline = build_pipeline(generator, FakeDetector(), parallel=False)

    document = await pipeline.generate("Topic", 1000)

    assert len(document.sections) == 3
    assert len(generator.prompts) == 4


async def test_non_transient_generator_failure_is_not_retried():
    generator = FakeGenerator(errors=[GenerationUnavailable("400", transient=False)])
    pipeline = build_pipeline(generator, FakeDetector(), parallel=False)

    with pytest.raises(GenerationError):
        await pipeline.generate("Topic", 1000)
    assert len(generator.prompts) == 1


async def test_section_failure_cancels_siblings():
    class IntroFails(FakeGenerator):
        async def generate(self, prompt, target_word_count, style, tone):
            if "introduction" in prompt:
                raise GenerationUnavailable("bad request", transient=False)
            return await super().generate(prompt, target_word_count, style, tone)

    generator = IntroFails(delay=10.0)
    pipeline = build_pipeline(generator, FakeDetector())

    with pytest.raises(GenerationError):
        await asyncio.wait_for(pipeline.generate("Topic", 1000), timeout=2.0)
    assert generator.cancelled == 2


async def test_generator_call_timeout():
    generator = FakeGenerator(delay=1.0)
    pipeline = build_pipeline(generator, FakeDetector(), call_timeout=0.05, max_retries=2, parallel=False)

    with pytest.raises(GenerationError):
        await pipeline.generate("Topic", 1000)
    assert len(generator.prompts) == 2


async def test_circuit_opens_and_short_circuits_calls():
    breaker = CircuitBreaker(threshold=2, reset_seconds=300)
    generator = FakeGenerator(errors=[GenerationUnavailable("503") for _ in range(10)])
    pipeline = build_pipeline(generator, FakeDetector(), breaker=breaker, max_retries=3, parallel=False)

    with pytest.raises(GenerationError, match="circuit is open"):
        await pipeline.generate("Topic", 1000)

    assert len(generator.prompts) == 2
    assert breaker.state is CircuitState.OPEN


def test_circuit_half_opens_after_reset_window():
    now = [0.0]
    breaker = CircuitBreaker(threshold=1, reset_seconds=10, clock=lambda: now[0])

    breaker.record_failure()
    assert breaker.allow() is False

    now[0] = 10.0
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.allow() is True

    breaker.record_success()
    assert breaker.state is CircuitState.CLOSED


def test_failed_probe_reopens_circuit():
    now = [0.0]
    breaker = CircuitBreaker(threshold=1, reset_seconds=10, clock=lambda: now[0])
    breaker.record_failure()

    now[0] = 15.0
    breaker.record_failure()

    assert breaker.state is CircuitState.OPEN
    now[0] = 24.0
    assert breaker.allow() is False
