import os
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from audicle.services.exceptions import ProviderError, ProviderErrorKind

logger = structlog.get_logger(__name__)

USER_AGENT = os.getenv(
    "FETCH_USER_AGENT",
    "Mozilla/5.0 (compatible; AudicleBot/1.0; +https://github.com/audicle)",
)
REQUEST_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
# Alternative providers are the retry; repeating a call is opt-in.
FETCH_MAX_RETRIES = int(os.getenv("FETCH_MAX_RETRIES", "0"))
RETRY_AFTER_MAX_SECONDS = float(os.getenv("RETRY_AFTER_MAX_SECONDS", "300"))
ACCEPT_LANG_OPTIONS = [
    value.strip()
    for value in os.getenv(
        "FETCH_ACCEPT_LANGUAGE_OPTIONS", "en-US,en;q=0.9|en-GB,en;q=0.8|en;q=0.7"
    ).split("|")
    if value.strip()
]
ACCEPT_HEADER_OPTIONS = [
    value.strip()
    for value in os.getenv(
        "FETCH_ACCEPT_OPTIONS",
        "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8|text/html;q=0.9,*/*;q=0.8",
    ).split("|")
    if value.strip()
]
JSON_ACCEPT_HEADER = "application/json,text/plain;q=0.9,*/*;q=0.5"

TRANSIENT_STATUS_CODES = {500, 502, 503, 504}

_session_lock = threading.Lock()
_session: requests.Session | None = None


@dataclass(frozen=True)
class FetchResponse:
    url: str
    final_url: str
    status_code: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)
    elapsed_ms: int = 0


def _retry_adapter() -> HTTPAdapter:
    retry = Retry(
        total=FETCH_MAX_RETRIES,
        backoff_factor=0.3,
        status_forcelist=sorted(TRANSIENT_STATUS_CODES),
        allowed_methods=("GET", "HEAD", "OPTIONS"),
        raise_on_status=False,
    )
    return HTTPAdapter(max_retries=retry, pool_connections=8, pool_maxsize=16)


def _get_session() -> requests.Session:
    global _session
    if _session is not None:
        return _session
    with _session_lock:
        if _session is not None:
            return _session
        sess = requests.Session()
        adapter = _retry_adapter()
        sess.mount("https://", adapter)
        sess.mount("http://", adapter)
        _session = sess
    return _session


def _build_headers(accept: Optional[str]) -> dict[str, str]:
    return {
        "User-Agent": USER_AGENT,
        "Accept-Language": (
            random.choice(ACCEPT_LANG_OPTIONS)
            if ACCEPT_LANG_OPTIONS
            else "en-US,en;q=0.9"
        ),
        "Accept": accept
        or (
            random.choice(ACCEPT_HEADER_OPTIONS)
            if ACCEPT_HEADER_OPTIONS
            else "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
        ),
        "Cache-Control": "no-cache",
    }


def retry_after_seconds(response: Any) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP date)."""
    headers = getattr(response, "headers", None) or {}
    retry_after = headers.get("Retry-After")
    if not retry_after:
        return None
    retry_after = retry_after.strip()
    if retry_after.isdigit():
        return min(float(retry_after), RETRY_AFTER_MAX_SECONDS)
    try:
        parsed = parsedate_to_datetime(retry_after)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        delta = (parsed - datetime.now(timezone.utc)).total_seconds()
        if delta > 0:
            return min(delta, RETRY_AFTER_MAX_SECONDS)
    except (TypeError, ValueError):
        logger.debug(event="fetch.retry_after_unparsed", value=retry_after)
    return None


def http_get(
    url: str,
    *,
    provider: str,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
    accept: Optional[str] = None,
) -> FetchResponse:
    """GET ``url`` once, mapping every failure onto a ``ProviderError`` kind."""
    session = session or _get_session()
    headers = _build_headers(accept)
    started = time.perf_counter()

    try:
        logger.debug(event="fetch.request", provider=provider, url=url)
        response = session.get(
            url,
            headers=headers,
            timeout=timeout or REQUEST_TIMEOUT_SECONDS,
            allow_redirects=True,
        )
    except requests.Timeout as exc:
        logger.warning(
            event="fetch.timeout", provider=provider, url=url, error=str(exc)
        )
        raise ProviderError(
            ProviderErrorKind.TIMEOUT,
            f"Request timed out after {timeout or REQUEST_TIMEOUT_SECONDS:g}s",
            provider=provider,
            url=url,
        ) from exc
    except requests.RequestException as exc:
        logger.warning(
            event="fetch.request_exception", provider=provider, url=url, error=str(exc)
        )
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            f"Failed to fetch URL: {exc}",
            provider=provider,
            url=url,
        ) from exc

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    status = response.status_code

    if status == 429:
        wait = retry_after_seconds(response)
        logger.warning(
            event="fetch.rate_limited",
            provider=provider,
            url=url,
            status=status,
            retry_after=wait,
        )
        raise ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            "Rate limited: HTTP 429",
            provider=provider,
            url=url,
            retry_after=wait,
        )

    if not 200 <= status < 300:
        logger.warning(
            event="fetch.bad_status",
            provider=provider,
            url=url,
            status=status,
            elapsed_ms=elapsed_ms,
        )
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            f"Failed to fetch URL: HTTP {status}",
            provider=provider,
            url=url,
        )

    logger.debug(
        event="fetch.success",
        provider=provider,
        url=url,
        status=status,
        elapsed_ms=elapsed_ms,
    )
    return FetchResponse(
        url=url,
        final_url=getattr(response, "url", None) or url,
        status_code=status,
        text=response.text or "",
        headers=dict(getattr(response, "headers", None) or {}),
        elapsed_ms=elapsed_ms,
    )
