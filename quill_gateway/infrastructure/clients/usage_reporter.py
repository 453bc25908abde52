"""Usage webhook client with exponential backoff retry logic"""

import httpx
import asyncio
from quill_gateway.config import settings
from quill_gateway.domain.exceptions import UsageReportError
from quill_gateway.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter
from quill_gateway.utils.date_utils import utc_now


class UsageReporter:
    """Client for reporting delivered usage to the billing/analytics webhook"""

    def __init__(self, webhook_url: str | None = None):
        self.webhook_url = webhook_url or settings.usage_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def record(self, user_id: str, words_generated: int, credits_used: int, kind: str = "writing") -> None:
        """
        Send a usage event with retry logic.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s (base * 2^(attempt-1))
        - Retries on HTTP errors and network failures
        - Tracks latency histogram and failure counter

        Raises:
            UsageReportError: delivery failed after all retries
        """
        payload = {
            "event": "USAGE_RECORDED",
            "user_id": user_id,
            "kind": kind,
            "words_generated": words_generated,
            "credits_used": credits_used,
            "timestamp": utc_now().isoformat(),
        }

        attempt = 0
        async with httpx.AsyncClient() as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return  # Success

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise UsageReportError(f"Usage webhook failed after {attempt} attempts: {e}") from e

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
