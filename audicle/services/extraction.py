from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, TypeVar

import requests
import structlog

from audicle.models.article import (
    ArticleRecord,
    AttemptFailure,
    ExtractionAttemptLog,
    ProviderResult,
    RawPayload,
)
from audicle.services import html_extractor, providers
from audicle.services.exceptions import (
    AllProvidersFailed,
    InsufficientContent,
    ProviderError,
    ProviderErrorKind,
)
from audicle.services.providers import ProviderStrategy
from audicle.services.url_normalizer import normalize_url

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _record_from_payload(payload: RawPayload, source_url: str) -> ArticleRecord:
    if payload.is_html:
        return html_extractor.extract(payload.html, source_url, provider=payload.provider)
    return html_extractor.record_from_metadata(
        payload.data, source_url, provider=payload.provider
    )


def _attempt_provider(
    strategy: ProviderStrategy,
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> ProviderResult:
    if providers.is_cooling_down(strategy.name):
        return ProviderResult.failure(
            strategy.name,
            ProviderError(
                ProviderErrorKind.RATE_LIMITED,
                "Provider is cooling down after a rate limit",
                provider=strategy.name,
                url=url,
            ),
        )

    try:
        payload = strategy.fetch(url, session=session, timeout=timeout)
        record = _record_from_payload(payload, url)
    except ProviderError as exc:
        if exc.kind is ProviderErrorKind.RATE_LIMITED:
            providers.start_cooldown(strategy.name, exc.retry_after)
        return ProviderResult.failure(strategy.name, exc)
    except InsufficientContent as exc:
        return ProviderResult.failure(
            strategy.name,
            ProviderError(
                ProviderErrorKind.EMPTY_CONTENT,
                str(exc),
                provider=strategy.name,
                url=url,
            ),
        )
    except Exception as exc:  # pragma: no cover - defensive guard
        logger.exception(
            event="extractor_attempt_exception",
            provider=strategy.name,
            url=url,
            error_type=exc.__class__.__name__,
        )
        return ProviderResult.failure(
            strategy.name,
            ProviderError(
                ProviderErrorKind.FETCH_FAILED,
                f"{exc.__class__.__name__}: {exc}",
                provider=strategy.name,
                url=url,
            ),
        )
    return ProviderResult.success(strategy.name, record)


def extract_article(
    url: str,
    providers_chain: Optional[Iterable[ProviderStrategy]] = None,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> ArticleRecord:
    """Try each provider in order and return the first usable article.

    Raises ``InvalidUrl`` before any provider is contacted, or
    ``AllProvidersFailed`` carrying one cause per provider.
    """
    normalized = normalize_url(url)
    chain = (
        list(providers_chain)
        if providers_chain is not None
        else providers.build_provider_chain()
    )
    attempt_log = ExtractionAttemptLog()
    attempts: list[dict[str, Any]] = []

    for strategy in chain:
        started = time.perf_counter()
        result = _attempt_provider(strategy, normalized, session=session, timeout=timeout)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        if result.ok:
            attempts.append(
                {"provider": strategy.name, "status": "success", "elapsed_ms": elapsed_ms}
            )
            # structlog uses the positional argument for the event name; keep ``event`` keyword-only.
            logger.info(
                event="extractor_attempt",
                operation="extraction.attempt",
                provider=strategy.name,
                url=normalized,
                status="success",
                chars=len(result.record.content),
                elapsed_ms=elapsed_ms,
            )
            logger.info(
                event="extraction_chain",
                operation="extraction.chain",
                url=normalized,
                status="success",
                winner=strategy.name,
                attempts=attempts,
            )
            return result.record

        failure = AttemptFailure.from_error(strategy.name, result.error, elapsed_ms)
        attempt_log.record(failure)
        attempts.append(
            {
                "provider": strategy.name,
                "status": "failure",
                "error_type": failure.kind,
                "elapsed_ms": elapsed_ms,
            }
        )
        logger.warning(
            event="extractor_attempt",
            operation="extraction.attempt",
            provider=strategy.name,
            url=normalized,
            status="failure",
            error_type=failure.kind,
            error=failure.message,
            elapsed_ms=elapsed_ms,
        )

    logger.error(
        event="extraction_chain",
        operation="extraction.chain",
        url=normalized,
        status="failure",
        attempts=attempts,
    )
    raise AllProvidersFailed(attempt_log, url=normalized)


@dataclass(frozen=True)
class Generation:
    scope: str
    number: int
    tracker: "RequestGenerations"

    def is_current(self) -> bool:
        return self.tracker.current(self.scope) == self.number


class RequestGenerations:
    """Monotonic request counters per client scope; the latest request wins.

    ``publish`` and ``supersede`` run their callback while holding the lock,
    so a generation check and the state change it guards cannot interleave
    with a newer request or a reset.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counter = itertools.count(1)
        self._latest: dict[str, int] = {}

    def begin(self, scope: str) -> Generation:
        with self._lock:
            number = next(self._counter)
            self._latest[scope] = number
        return Generation(scope=scope, number=number, tracker=self)

    def current(self, scope: str) -> Optional[int]:
        with self._lock:
            return self._latest.get(scope)

    def publish(self, generation: Generation, fn: Callable[[], T]) -> tuple[bool, Optional[T]]:
        """Run ``fn`` only if ``generation`` is still the latest for its scope."""
        with self._lock:
            if self._latest.get(generation.scope) != generation.number:
                return False, None
            return True, fn()

    def supersede(self, scope: str, fn: Callable[[], T]) -> T:
        """Invalidate every in-flight request for ``scope`` and run ``fn``."""
        with self._lock:
            self._latest[scope] = next(self._counter)
            return fn()
