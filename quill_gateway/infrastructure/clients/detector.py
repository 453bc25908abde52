"""External AI/plagiarism detector HTTP client"""

import httpx
from typing import Any, Dict, List
from quill_gateway.config import settings
from quill_gateway.domain.exceptions import DetectorUnavailable
from quill_gateway.domain.models import DetectionScores
from quill_gateway.utils.retry import retry_async


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    return True


def _percent(value: Any) -> float:
    """Detector reports 0..1; domain uses 0..100"""
    return max(0.0, min(100.0, float(value) * 100))


def parse_scan(data: Dict[str, Any]) -> DetectionScores:
    """
    Map a scan response onto DetectionScores.

    Expected shape:
        {"score": {"original": 0.82, "ai": 0.10, "plagiarism": 0.03},
         "confidence": 0.9,
         "highlights": [{"text": "...", "score": 0.9, "type": "ai"}]}
    """
    score = data["score"]
    spans: List[str] = [h["text"] for h in data.get("highlights") or [] if h.get("text")]
    return DetectionScores(
        originality=_percent(score["original"]),
        ai_likelihood=_percent(score["ai"]),
        plagiarism=_percent(score.get("plagiarism", 0)),
        confidence=_percent(data.get("confidence", 0)),
        flagged_spans=spans,
    )


class DetectorClient:
    """Client for the external detection service"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
    ):
        self.base_url = base_url or settings.detector_api_base
        self.api_key = api_key if api_key is not None else settings.detector_api_key
        self.timeout = timeout or settings.detector_call_timeout_seconds
        self.max_retries = max_retries or settings.detector_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.detector_backoff_base

    async def detect(self, text: str) -> DetectionScores:
        """
        Score `text` for originality, AI likelihood and plagiarism.

        Retries timeouts, network errors, 429 and 5xx with exponential backoff.

        Raises:
            DetectorUnavailable: retries exhausted, non-retryable status, or invalid response
        """
        async with httpx.AsyncClient(timeout=self.timeout) as client:

            async def scan() -> Dict[str, Any]:
                response = await client.post(
                    f"{self.base_url}/scan",
                    json={"content": text},
                    headers={"X-OAI-API-KEY": self.api_key},
                )
                response.raise_for_status()
                return response.json()

            try:
                data = await retry_async(
                    scan,
                    max_attempts=self.max_retries,
                    retry_on=(httpx.HTTPStatusError, httpx.RequestError),
                    base_delay=self.backoff_base,
                    should_retry=_is_transient,
                    label="detector_scan",
                )
                return parse_scan(data)

            except httpx.TimeoutException as e:
                raise DetectorUnavailable(f"Detector timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                raise DetectorUnavailable(f"Detector API error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                raise DetectorUnavailable(f"Detector unreachable: {e}") from e
            except (KeyError, ValueError, TypeError) as e:
                raise DetectorUnavailable(f"Invalid detector response: {e}") from e
