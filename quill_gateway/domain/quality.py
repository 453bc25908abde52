"""Quality classification - map detector scores to severity and refinement strategy"""

from dataclasses import dataclass
from typing import List, Mapping

from quill_gateway.domain.models import DetectionScores, RefinementStrategy, Severity

# Conservative stand-in when the detector cannot be reached
FALLBACK_SCORES = DetectionScores(originality=100, ai_likelihood=15, plagiarism=0, confidence=50)


@dataclass(frozen=True)
class Cutoff:
    """A band is entered when any score crosses its cutoff"""

    ai_likelihood: float
    plagiarism: float
    originality: float

    @classmethod
    def from_mapping(cls, values: Mapping[str, float]) -> "Cutoff":
        return cls(
            ai_likelihood=values["ai_likelihood"],
            plagiarism=values["plagiarism"],
            originality=values["originality"],
        )

    def crossed_by(self, scores: DetectionScores) -> bool:
        return (
            scores.ai_likelihood > self.ai_likelihood
            or scores.plagiarism > self.plagiarism
            or scores.originality < self.originality
        )


@dataclass(frozen=True)
class SeverityThresholds:
    """
    Decreasing cutoffs for high / medium / low; anything below is minimal.

    Defaults:
    - high:   ai > 80 or plagiarism > 50 or originality < 60
    - medium: ai > 60 or plagiarism > 30 or originality < 75
    - low:    ai > 40 or plagiarism > 15 or originality < 90
    """

    high: Cutoff = Cutoff(80, 50, 60)
    medium: Cutoff = Cutoff(60, 30, 75)
    low: Cutoff = Cutoff(40, 15, 90)


def classify_severity(scores: DetectionScores, thresholds: SeverityThresholds = SeverityThresholds()) -> Severity:
    if thresholds.high.crossed_by(scores):
        return Severity.HIGH
    elif thresholds.medium.crossed_by(scores):
        return Severity.MEDIUM
    elif thresholds.low.crossed_by(scores):
        return Severity.LOW
    return Severity.MINIMAL


def refinement_strategy(severity: Severity) -> RefinementStrategy:
    """high -> regenerate, medium -> rewrite flagged spans, otherwise accept"""
    if severity is Severity.HIGH:
        return RefinementStrategy.FULL_REGENERATION
    elif severity is Severity.MEDIUM:
        return RefinementStrategy.TARGETED_REWRITE
    return RefinementStrategy.ACCEPT


def refinement_constraints(scores: DetectionScores, thresholds: SeverityThresholds = SeverityThresholds()) -> List[str]:
    """Negative constraints fed back to the generator on refinement"""
    constraints: List[str] = []

    if scores.ai_likelihood > thresholds.high.ai_likelihood:
        constraints.append("Do not reuse the structure or phrasing of the previous draft")
        constraints.append("Avoid formulaic transitions, stock openers and summary conclusions")
        constraints.append("Vary sentence length and structure throughout")
    elif scores.ai_likelihood > thresholds.medium.ai_likelihood:
        constraints.append("Rephrase repetitive or formulaic language")
        constraints.append("Prefer specific examples over general statements")

    if scores.plagiarism > thresholds.high.plagiarism:
        constraints.append("Do not reproduce wording from existing sources; express every idea in original language")
    elif scores.plagiarism > thresholds.medium.plagiarism:
        constraints.append("Paraphrase passages that closely follow known sources")

    if scores.originality < thresholds.medium.originality:
        constraints.append("Add original analysis rather than restating common knowledge")

    return constraints
