"""Reconciliation - whole-document detection pass merged with section outcomes"""

import logging

from quill_gateway.config import settings
from quill_gateway.domain.models import Document, FinalVerdict
from quill_gateway.domain.quality import SeverityThresholds
from quill_gateway.domain.reconciliation import build_verdict
from quill_gateway.services.quality_gate import Detector, detect_or_none, thresholds_from_settings
from quill_gateway.utils.text_utils import count_words

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        detector: Detector,
        thresholds: SeverityThresholds | None = None,
        tolerance: float | None = None,
        adequate_length_words: int | None = None,
        call_timeout: float | None = None,
    ):
        self.detector = detector
        self.thresholds = thresholds or thresholds_from_settings()
        self.tolerance = tolerance if tolerance is not None else settings.agreement_tolerance
        self.adequate_length_words = adequate_length_words or settings.adequate_length_words
        self.call_timeout = call_timeout or settings.detector_call_timeout_seconds

    async def reconcile(self, document: Document) -> FinalVerdict:
        """
        Run the whole-document pass and build the final verdict.

        The pass always runs, even when every section came back minimal.
        When it fails, the verdict falls back to section averages at lower
        confidence.
        """
        whole = await detect_or_none(self.detector, document.content, self.call_timeout)
        verdict = build_verdict(
            whole,
            document.sections,
            count_words(document.content),
            thresholds=self.thresholds,
            tolerance=self.tolerance,
            adequate_length_words=self.adequate_length_words,
        )

        logger.info(
            "Document reconciled",
            extra={
                "step": "reconcile",
                "quality_score": verdict.quality_score,
                "severity": verdict.severity.value,
                "confidence": verdict.confidence,
                "whole_document_detected": verdict.whole_document_detected,
            },
        )
        return verdict
