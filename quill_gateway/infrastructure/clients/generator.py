"""External text generator HTTP client (OpenAI-compatible chat completions)"""

import httpx
from quill_gateway.config import settings
from quill_gateway.domain.exceptions import GenerationUnavailable
from quill_gateway.infrastructure.observability.metrics import generator_latency_histogram, generator_failure_counter

# Rough tokens-per-word allowance so the model is not cut off mid-section
TOKENS_PER_WORD = 2


class GeneratorClient:
    """Client for the external generation service"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = base_url or settings.generator_api_base
        self.api_key = api_key if api_key is not None else settings.generator_api_key
        self.model = model or settings.generator_model
        self.timeout = timeout or settings.generator_call_timeout_seconds

    async def generate(self, prompt: str, target_word_count: int, style: str, tone: str) -> str:
        """
        Request `target_word_count` words of text for `prompt`.

        Raises:
            GenerationUnavailable: transient on timeouts, network errors, 429 and 5xx;
                non-transient on other 4xx and malformed responses
        """
        payload = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": f"You are an expert writer. Write in a {style} style with a {tone} tone.",
                },
                {"role": "user", "content": prompt},
            ],
            "max_tokens": target_word_count * TOKENS_PER_WORD,
            "temperature": 0.7,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                with generator_latency_histogram.time():
                    response = await client.post(
                        f"{self.base_url}/chat/completions",
                        json=payload,
                        headers=headers,
                    )
                response.raise_for_status()
                content = response.json()["choices"][0]["message"]["content"]

            except httpx.TimeoutException as e:
                generator_failure_counter.inc()
                raise GenerationUnavailable(f"Generator timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                generator_failure_counter.inc()
                status = e.response.status_code
                raise GenerationUnavailable(
                    f"Generator API error: {status}",
                    transient=status == 429 or status >= 500,
                ) from e
            except httpx.RequestError as e:
                generator_failure_counter.inc()
                raise GenerationUnavailable(f"Generator unreachable: {e}") from e
            except (KeyError, IndexError, ValueError, TypeError) as e:
                generator_failure_counter.inc()
                raise GenerationUnavailable(f"Invalid response from generator: {e}", transient=False) from e

        if not content or not content.strip():
            generator_failure_counter.inc()
            raise GenerationUnavailable("Generator returned empty content")

        return content.strip()
