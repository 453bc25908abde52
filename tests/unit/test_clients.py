"""Unit tests for the external HTTP clients"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from quill_gateway.domain.exceptions import DetectorUnavailable, GenerationUnavailable, UsageReportError
from quill_gateway.infrastructure.clients.detector import DetectorClient
from quill_gateway.infrastructure.clients.generator import GeneratorClient
from quill_gateway.infrastructure.clients.usage_reporter import UsageReporter


def response(status: int, payload=None) -> httpx.Response:
    return httpx.Response(status, json=payload or {}, request=httpx.Request("POST", "http://test"))


SCAN = {
    "score": {"original": 0.82, "ai": 0.25, "plagiarism": 0.04},
    "confidence": 0.9,
    "highlights": [{"text": "It is important to note", "score": 0.95, "type": "ai"}],
}


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_detector_scales_scores_to_percent(mock_post: AsyncMock):
    mock_post.return_value = response(200, SCAN)

    scores = await DetectorClient(base_url="http://det", api_key="k", backoff_base=0).detect("text")

    assert scores.originality == pytest.approx(82)
    assert scores.ai_likelihood == pytest.approx(25)
    assert scores.plagiarism == pytest.approx(4)
    assert scores.confidence == pytest.approx(90)
    assert scores.flagged_spans == ["It is important to note"]
    assert mock_post.call_args.args[0] == "http://det/scan"
    assert mock_post.call_args.kwargs["headers"] == {"X-OAI-API-KEY": "k"}


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_detector_retries_server_errors_then_gives_up(mock_post: AsyncMock):
    mock_post.return_value = response(503)

    with pytest.raises(DetectorUnavailable):
        await DetectorClient(max_retries=3, backoff_base=0).detect("text")

    assert mock_post.call_count == 3


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_detector_recovers_after_transient_error(mock_post: AsyncMock):
    mock_post.side_effect = [httpx.ConnectError("refused"), response(200, SCAN)]

    scores = await DetectorClient(max_retries=3, backoff_base=0).detect("text")

    assert scores.ai_likelihood == pytest.approx(25)


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_detector_client_errors_are_not_retried(mock_post: AsyncMock):
    mock_post.return_value = response(401)

    with pytest.raises(DetectorUnavailable):
        await DetectorClient(max_retries=3, backoff_base=0).detect("text")

    assert mock_post.call_count == 1


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_detector_invalid_payload(mock_post: AsyncMock):
    mock_post.return_value = response(200, {"unexpected": True})

    with pytest.raises(DetectorUnavailable):
        await DetectorClient(backoff_base=0).detect("text")


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_generator_returns_message_content(mock_post: AsyncMock):
    mock_post.return_value = response(200, {"choices": [{"message": {"content": "  Generated text.  "}}]})

    text = await GeneratorClient(base_url="http://gen", api_key="sk").generate("prompt", 150, "Academic", "Formal")

    assert text == "Generated text."
    assert mock_post.call_args.args[0] == "http://gen/chat/completions"
    assert mock_post.call_args.kwargs["headers"] == {"Authorization": "Bearer sk"}
    assert mock_post.call_args.kwargs["json"]["max_tokens"] == 300


@pytest.mark.parametrize("status,transient", [(429, True), (502, True), (400, False), (401, False)])
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_generator_classifies_http_errors(mock_post: AsyncMock, status: int, transient: bool):
    mock_post.return_value = response(status)

    with pytest.raises(GenerationUnavailable) as exc_info:
        await GeneratorClient().generate("prompt", 150, "Academic", "Formal")

    assert exc_info.value.transient is transient


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_generator_timeout_is_transient(mock_post: AsyncMock):
    mock_post.side_effect = httpx.ReadTimeout("slow")

    with pytest.raises(GenerationUnavailable) as exc_info:
        await GeneratorClient().generate("prompt", 150, "Academic", "Formal")

    assert exc_info.value.transient is True


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_generator_empty_content(mock_post: AsyncMock):
    mock_post.return_value = response(200, {"choices": [{"message": {"content": "   "}}]})

    with pytest.raises(GenerationUnavailable):
        await GeneratorClient().generate("prompt", 150, "Academic", "Formal")


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_usage_reporter_retries_until_delivered(mock_post: AsyncMock):
    mock_post.side_effect = [response(500), response(200)]
    reporter = UsageReporter(webhook_url="http://hook")
    reporter.backoff_base = 0

    await reporter.record("user_1", 300, 100, "writing")

    assert mock_post.call_count == 2
    payload = mock_post.call_args.kwargs["json"]
    assert payload["event"] == "USAGE_RECORDED"
    assert (payload["words_generated"], payload["credits_used"]) == (300, 100)


@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_usage_reporter_gives_up_after_max_retries(mock_post: AsyncMock):
    mock_post.return_value = response(500)
    reporter = UsageReporter(webhook_url="http://hook")
    reporter.backoff_base = 0
    reporter.max_retries = 3

    with pytest.raises(UsageReportError):
        await reporter.record("user_1", 300, 100)

    assert mock_post.call_count == 3
