from __future__ import annotations

import asyncio
import json

import httpx
import pybreaker
import pytest

from phi_vault.detection.detector import BREAKER_NAME, PhiDetector, PresidioAnalyzerDetector
from phi_vault.errors import DetectorError, DetectorUnavailableError, PhiErrorCode

BASE_URL = "http://presidio.test"


def _detector(handler, **kwargs) -> PresidioAnalyzerDetector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("backoff_seconds", 0.0)
    return PresidioAnalyzerDetector(BASE_URL, client=client, **kwargs)


def test_presidio_detector_satisfies_protocol() -> None:
    assert isinstance(_detector(lambda request: httpx.Response(200, json=[])), PhiDetector)


@pytest.mark.asyncio
async def test_analyze_posts_text_and_parses_spans() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/analyze"
        seen.append(json.loads(request.content))
        return httpx.Response(
            200,
            json=[
                {"entity_type": "PERSON", "start": 8, "end": 16, "score": 0.85},
                {"entity_type": "PHONE_NUMBER", "start": 20, "end": 32, "score": 0.75},
            ],
        )

    detector = _detector(handler, language="es")
    spans = await detector.analyze_text("Patient John Doe at 555-123-4567")

    assert seen == [{"text": "Patient John Doe at 555-123-4567", "language": "es"}]
    assert [(span.entity_type, span.text) for span in spans] == [
        ("PERSON", "John Doe"),
        ("PHONE_NUMBER", "555-123-4567"),
    ]


@pytest.mark.asyncio
async def test_score_threshold_is_forwarded_when_set() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=[])

    await _detector(handler, score_threshold=0.4).analyze_text("hello")

    assert bodies[0]["score_threshold"] == 0.4


@pytest.mark.asyncio
async def test_empty_text_skips_the_analyzer() -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not run
        raise AssertionError("analyzer called")

    assert await _detector(handler).analyze_text("") == []


@pytest.mark.asyncio
async def test_server_errors_are_retried() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=[{"entity_type": "ID", "start": 0, "end": 4, "score": 0.7}])

    spans = await _detector(handler, max_retries=2).analyze_text("A123 ok")

    assert attempts["count"] == 3
    assert spans[0].text == "A123"


@pytest.mark.asyncio
async def test_exhausted_retries_raise_detector_error() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(502)

    with pytest.raises(DetectorError) as excinfo:
        await _detector(handler, max_retries=1).analyze_text("text")

    assert attempts["count"] == 2
    assert excinfo.value.code is PhiErrorCode.DETECTOR_FAILURE


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(422, json={"error": "bad language"})

    with pytest.raises(DetectorError):
        await _detector(handler, max_retries=3).analyze_text("text")

    assert attempts["count"] == 1


@pytest.mark.asyncio
async def test_transport_errors_surface_as_detector_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(DetectorError, match="unreachable"):
        await _detector(handler, max_retries=1).analyze_text("text")


@pytest.mark.asyncio
async def test_slow_analyzer_times_out() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return httpx.Response(200, json=[])

    with pytest.raises(DetectorError) as excinfo:
        await _detector(handler, timeout_seconds=0.05, max_retries=0).analyze_text("text")

    assert excinfo.value.code is PhiErrorCode.TIMEOUT


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"results": []},
        ["not-a-dict"],
        [{"start": 0, "end": 4}],
        [{"entity_type": "PERSON", "start": "x", "end": 4}],
    ],
)
async def test_unexpected_payloads_are_rejected(body: object) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(DetectorError):
        await _detector(handler).analyze_text("text")


@pytest.mark.asyncio
async def test_invalid_json_is_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>")

    with pytest.raises(DetectorError, match="invalid JSON"):
        await _detector(handler).analyze_text("text")


@pytest.mark.asyncio
async def test_rate_limited_responses_are_retried() -> None:
    responses = [httpx.Response(429), httpx.Response(200, json=[])]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    assert await _detector(handler, max_retries=1).analyze_text("text") == []
    assert responses == []


def test_default_breaker_is_named_for_the_analyzer() -> None:
    detector = PresidioAnalyzerDetector(BASE_URL)

    assert isinstance(detector.breaker, pybreaker.CircuitBreaker)
    assert detector.breaker.name == BREAKER_NAME


@pytest.mark.asyncio
async def test_breaker_opens_after_consecutive_failures() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(500)

    breaker = pybreaker.CircuitBreaker(fail_max=2, reset_timeout=30, name=BREAKER_NAME)
    detector = _detector(handler, max_retries=0, breaker=breaker)

    with pytest.raises(DetectorError) as first:
        await detector.analyze_text("text")
    assert not isinstance(first.value, DetectorUnavailableError)

    # The second failure trips the breaker.
    with pytest.raises(DetectorUnavailableError):
        await detector.analyze_text("text")
    assert breaker.current_state == pybreaker.STATE_OPEN

    with pytest.raises(DetectorUnavailableError) as excinfo:
        await detector.analyze_text("text")
    assert attempts["count"] == 2
    assert excinfo.value.code is PhiErrorCode.DETECTOR_UNAVAILABLE


@pytest.mark.asyncio
async def test_breaker_half_open_trial_closes_on_success() -> None:
    responses = [httpx.Response(500), httpx.Response(200, json=[])]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    breaker = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=30, name=BREAKER_NAME)
    detector = _detector(handler, max_retries=0, breaker=breaker)

    with pytest.raises(DetectorError):
        await detector.analyze_text("text")
    assert breaker.current_state == pybreaker.STATE_OPEN

    breaker.half_open()
    assert await detector.analyze_text("text") == []
    assert breaker.current_state == pybreaker.STATE_CLOSED
    assert breaker.fail_counter == 0


@pytest.mark.asyncio
async def test_breaker_failed_trial_reopens() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(500)

    breaker = pybreaker.CircuitBreaker(fail_max=3, reset_timeout=30, name=BREAKER_NAME)
    detector = _detector(handler, max_retries=0, breaker=breaker)
    breaker.half_open()

    with pytest.raises(DetectorError):
        await detector.analyze_text("text")
    assert breaker.current_state == pybreaker.STATE_OPEN

    with pytest.raises(DetectorUnavailableError):
        await detector.analyze_text("text")
    assert attempts["count"] == 1


@pytest.mark.asyncio
async def test_breaker_success_resets_counter() -> None:
    responses = [
        httpx.Response(500),
        httpx.Response(500),
        httpx.Response(200, json=[]),
        httpx.Response(500),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    breaker = pybreaker.CircuitBreaker(fail_max=3, reset_timeout=30, name=BREAKER_NAME)
    detector = _detector(handler, max_retries=0, breaker=breaker)

    for _ in range(2):
        with pytest.raises(DetectorError):
            await detector.analyze_text("text")
    assert await detector.analyze_text("text") == []
    with pytest.raises(DetectorError):
        await detector.analyze_text("text")

    assert breaker.current_state == pybreaker.STATE_CLOSED
    assert breaker.fail_counter == 1


@pytest.mark.asyncio
async def test_owned_client_is_closed() -> None:
    detector = PresidioAnalyzerDetector(BASE_URL)
    client = detector.client
    async with detector:
        pass
    assert client.is_closed
