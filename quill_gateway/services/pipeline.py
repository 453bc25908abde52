"""Generation pipeline - plan, generate and gate sections, then assemble the document"""

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, List, Mapping, Protocol

from quill_gateway.config import settings
from quill_gateway.domain import sections as section_planner
from quill_gateway.domain.exceptions import GenerationError, GenerationUnavailable
from quill_gateway.domain.models import (
    Document,
    PlanType,
    QualityAssessment,
    RefinementStrategy,
    Section,
    SectionPlan,
    Severity,
)
from quill_gateway.infrastructure.observability.metrics import circuit_open_counter, refinement_cycles_histogram
from quill_gateway.services.quality_gate import QualityGate
from quill_gateway.utils.retry import retry_async
from quill_gateway.utils.text_utils import context_summary

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n"

ROLE_INSTRUCTIONS = {
    "intro": "Write the introduction. Introduce the topic, give the necessary background and state the central argument.",
    "body": "Write a body section. Develop the argument with specific evidence, examples and analysis.",
    "conclusion": "Write the conclusion. Draw the argument together and close with its implications.",
}


class Generator(Protocol):
    async def generate(self, prompt: str, target_word_count: int, style: str, tone: str) -> str: ...


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Consecutive-failure breaker for the generator.

    Opens after `threshold` failures in a row; after `reset_seconds` one
    probe call is let through (half-open) and its outcome closes or reopens
    the circuit.
    """

    def __init__(
        self,
        threshold: int | None = None,
        reset_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold or settings.circuit_breaker_threshold
        self.reset_seconds = reset_seconds if reset_seconds is not None else settings.circuit_breaker_reset_seconds
        self.clock = clock
        self.failures = 0
        self.opened_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if self.opened_at is None:
            return CircuitState.CLOSED
        if self.clock() - self.opened_at >= self.reset_seconds:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def allow(self) -> bool:
        return self.state is not CircuitState.OPEN

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.state is CircuitState.HALF_OPEN or (self.opened_at is None and self.failures >= self.threshold):
            self.opened_at = self.clock()
            circuit_open_counter.inc()
            logger.warning(
                f"Generator circuit opened after {self.failures} consecutive failures",
                extra={"step": "circuit_breaker"},
            )


def build_section_prompt(
    prompt: str,
    section: SectionPlan,
    style: str,
    tone: str,
    context: str | None = None,
) -> str:
    instruction = ROLE_INSTRUCTIONS.get(section.role, ROLE_INSTRUCTIONS["body"])
    parts = [
        f"Topic: {prompt}",
        instruction,
        f"Write approximately {section.target_word_count} words in a {style} style with a {tone} tone.",
    ]
    if context:
        parts.append(f"Continue naturally from the previous section.\n{context}")
    return "\n\n".join(parts)


def build_refinement_prompt(section_prompt: str, content: str, assessment: QualityAssessment) -> str:
    """
    full_regeneration: start over with the gate's negative constraints.
    targeted_rewrite: keep the text, rewrite only the flagged spans.
    """
    constraints = "\n".join(f"- {c}" for c in assessment.recommendations)

    if assessment.refinement_strategy is RefinementStrategy.FULL_REGENERATION:
        return f"{section_prompt}\n\nConstraints:\n{constraints}"

    spans = assessment.scores.flagged_spans
    if spans:
        flagged = "\n".join(f'- "{s}"' for s in spans)
        target = f"Rewrite only these passages and keep everything else unchanged:\n{flagged}"
    else:
        target = "Revise the passages that read as formulaic or derivative and keep the rest unchanged."
    return f"{target}\n\nConstraints:\n{constraints}\n\nText:\n{content}"


class GenerationPipeline:
    """Drives section generation through the quality gate"""

    def __init__(
        self,
        generator: Generator,
        gate: QualityGate,
        breaker: CircuitBreaker | None = None,
        call_timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        backoff_jitter: float | None = None,
        backoff_max: float | None = None,
        parallel: bool | None = None,
        chunk_limits: Mapping[str, int] | None = None,
    ):
        self.generator = generator
        self.gate = gate
        self.breaker = breaker or CircuitBreaker()
        self.call_timeout = call_timeout or settings.generator_call_timeout_seconds
        self.max_retries = max_retries or settings.generator_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.generator_backoff_base
        self.backoff_jitter = backoff_jitter if backoff_jitter is not None else settings.generator_backoff_jitter
        self.backoff_max = backoff_max or settings.generator_backoff_max
        self.parallel = settings.parallel_sections if parallel is None else parallel
        self.chunk_limits = chunk_limits if chunk_limits is not None else settings.section_chunk_limits

    async def generate(
        self,
        prompt: str,
        total_word_count: int,
        style: str = "Academic",
        tone: str = "Formal",
        plan_type: PlanType | str | None = None,
    ) -> Document:
        """
        Generate a document of roughly `total_word_count` words.

        Raises:
            InvalidWordCount: nothing to plan
            GenerationError: any section failed; no partial document is returned
        """
        max_section_words = self.chunk_limits.get(PlanType(plan_type).value) if plan_type else None
        plans = section_planner.plan(total_word_count, max_section_words=max_section_words)

        if self.parallel:
            generated = await self._generate_parallel(plans, prompt, style, tone)
        else:
            generated = await self._generate_sequential(plans, prompt, style, tone)

        return Document(
            sections=generated,
            content=SECTION_SEPARATOR.join(s.content for s in generated),
            target_word_count=total_word_count,
        )

    async def _generate_parallel(self, plans: List[SectionPlan], prompt: str, style: str, tone: str) -> List[Section]:
        tasks = [asyncio.create_task(self._generate_section(p, prompt, style, tone)) for p in plans]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            # Covers both a failed sibling and cancellation of the caller
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for task in tasks:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
        return [task.result() for task in tasks]

    async def _generate_sequential(self, plans: List[SectionPlan], prompt: str, style: str, tone: str) -> List[Section]:
        generated: List[Section] = []
        context = None
        for section_plan in plans:
            section = await self._generate_section(section_plan, prompt, style, tone, context)
            generated.append(section)
            context = context_summary(section.content)
        return generated

    async def _generate_section(
        self,
        section_plan: SectionPlan,
        prompt: str,
        style: str,
        tone: str,
        context: str | None = None,
    ) -> Section:
        section_prompt = build_section_prompt(prompt, section_plan, style, tone, context)
        content = await self._call_generator(section_prompt, section_plan.target_word_count, style, tone)
        assessment = await self.gate.evaluate(content)

        cycles = 0
        while assessment.refinement_strategy is not RefinementStrategy.ACCEPT and cycles < self.gate.max_cycles:
            cycles += 1
            logger.info(
                f"Refining {section_plan.role} section {section_plan.index} "
                f"({assessment.severity.value}, {assessment.refinement_strategy.value})",
                extra={"step": "refine", "section": section_plan.index, "attempt": cycles},
            )
            refine_prompt = build_refinement_prompt(section_prompt, content, assessment)
            content = await self._call_generator(refine_prompt, section_plan.target_word_count, style, tone)
            assessment = await self.gate.evaluate(content)

        refinement_cycles_histogram.observe(cycles)

        return Section(
            index=section_plan.index,
            role=section_plan.role,
            target_word_count=section_plan.target_word_count,
            content=content,
            detection_scores=assessment.scores,
            severity=assessment.severity,
            refinement_cycles=cycles,
            requires_review=assessment.severity is Severity.HIGH,
            detector_fallback=assessment.detector_fallback,
        )

    async def _call_generator(self, prompt: str, target_word_count: int, style: str, tone: str) -> str:
        """
        One generator request with per-call timeout, breaker and bounded retry.

        Raises:
            GenerationError: retries exhausted, non-transient failure, or circuit open
        """

        async def attempt() -> str:
            if not self.breaker.allow():
                raise GenerationUnavailable("Generator circuit is open", transient=False)
            try:
                text = await asyncio.wait_for(
                    self.generator.generate(prompt, target_word_count, style, tone),
                    timeout=self.call_timeout,
                )
            except asyncio.TimeoutError as e:
                self.breaker.record_failure()
                raise GenerationUnavailable(f"Generator call timed out after {self.call_timeout}s") from e
            except GenerationUnavailable as e:
                if e.transient:
                    self.breaker.record_failure()
                raise
            self.breaker.record_success()
            return text

        try:
            return await retry_async(
                attempt,
                max_attempts=self.max_retries,
                retry_on=(GenerationUnavailable,),
                base_delay=self.backoff_base,
                jitter=self.backoff_jitter,
                max_delay=self.backoff_max,
                should_retry=lambda e: e.transient,
                label="generator_call",
            )
        except GenerationUnavailable as e:
            raise GenerationError(f"Section generation failed: {e}") from e
