"""PHI detection through an out-of-process Presidio analyzer."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, runtime_checkable

import httpx
import pybreaker
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import DetectorError, DetectorUnavailableError, PhiErrorCode
from ..logging import get_logger
from ..models import Span

logger = get_logger(__name__)

BREAKER_NAME = "presidio_analyzer"


@runtime_checkable
class PhiDetector(Protocol):
    """Strategy interface for PHI span detection."""

    async def analyze_text(self, text: str) -> list[Span]:  # pragma: no cover - protocol
        ...


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"Analyzer responded with status {response.status_code}")
        self.response = response


class PresidioAnalyzerDetector:
    """Calls ``POST {base_url}/analyze`` on a Presidio analyzer service.

    There is no local fallback: any failure surfaces as :class:`DetectorError`
    so that callers fail closed instead of persisting unredacted text.
    """

    def __init__(
        self,
        base_url: str,
        *,
        language: str = "en",
        timeout_seconds: float = 5.0,
        score_threshold: float | None = None,
        max_retries: int = 2,
        backoff_seconds: float = 0.2,
        breaker: pybreaker.CircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout_seconds = timeout_seconds
        self.score_threshold = score_threshold
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.breaker = breaker or pybreaker.CircuitBreaker(
            fail_max=5, reset_timeout=30, name=BREAKER_NAME
        )
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> PresidioAnalyzerDetector:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def analyze_text(self, text: str) -> list[Span]:
        if not text:
            return []

        try:
            with self.breaker.calling():
                raw = await self._post_with_retry(text)
                spans = self._parse(text, raw)
        except pybreaker.CircuitBreakerError as exc:
            logger.warning(
                "phi.detector.breaker_open",
                breaker=self.breaker.name,
                failures=self.breaker.fail_counter,
            )
            raise DetectorUnavailableError(
                "PHI analyzer circuit breaker is open",
                details={"breaker": str(self.breaker.name)},
            ) from exc
        logger.debug("phi.detector.analyzed", spans=len(spans), length=len(text))
        return spans

    async def _post_with_retry(self, text: str) -> Any:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=5.0),
            retry=retry_if_exception_type(
                (httpx.TransportError, asyncio.TimeoutError, _RetryableStatus)
            ),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.wait_for(self._post(text), timeout=self.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise DetectorError(
                "PHI analyzer timed out",
                code=PhiErrorCode.TIMEOUT,
                details={"timeout_seconds": str(self.timeout_seconds)},
            ) from exc
        except httpx.TransportError as exc:
            raise DetectorError(
                "PHI analyzer is unreachable", details={"url": self._analyze_url}
            ) from exc
        except _RetryableStatus as exc:
            raise DetectorError(
                str(exc), details={"status": str(exc.response.status_code)}
            ) from exc
        except RetryError as exc:  # pragma: no cover - reraise=True surfaces the cause
            raise DetectorError("PHI analyzer retries exhausted") from exc
        raise DetectorError("PHI analyzer returned no response")  # pragma: no cover

    @property
    def _analyze_url(self) -> str:
        return f"{self.base_url}/analyze"

    async def _post(self, text: str) -> Any:
        body: dict[str, Any] = {"text": text, "language": self.language}
        if self.score_threshold is not None:
            body["score_threshold"] = self.score_threshold

        response = await self.client.post(self._analyze_url, json=body)
        if response.status_code >= 500 or response.status_code == 429:
            raise _RetryableStatus(response)
        if response.status_code >= 400:
            raise DetectorError(
                f"PHI analyzer rejected the request with status {response.status_code}",
                details={"status": str(response.status_code)},
            )
        try:
            return response.json()
        except ValueError as exc:
            raise DetectorError("PHI analyzer returned invalid JSON") from exc

    @staticmethod
    def _parse(text: str, raw: Any) -> list[Span]:
        if not isinstance(raw, list):
            raise DetectorError("PHI analyzer returned an unexpected payload")
        spans: list[Span] = []
        for item in raw:
            if not isinstance(item, dict):
                raise DetectorError("PHI analyzer returned an unexpected result entry")
            try:
                start = int(item["start"])
                end = int(item["end"])
                span = Span(
                    start=start,
                    end=end,
                    score=float(item.get("score", 0.0)),
                    entity_type=str(item["entity_type"]),
                    text=text[start:end] if 0 <= start < end <= len(text) else None,
                )
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                raise DetectorError("PHI analyzer returned a malformed span") from exc
            spans.append(span)
        return spans


__all__ = ["BREAKER_NAME", "PhiDetector", "PresidioAnalyzerDetector"]
