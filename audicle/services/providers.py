from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional
from urllib.parse import quote

import requests
import structlog
from cachetools import TLRUCache

from audicle.config import ProviderEndpoints
from audicle.models.article import PAYLOAD_HTML, PAYLOAD_METADATA, RawPayload
from audicle.services.exceptions import ProviderError, ProviderErrorKind
from audicle.services.fetch import JSON_ACCEPT_HEADER, http_get
from audicle.utils.text_cleaner import html_to_text

logger = structlog.get_logger(__name__)

PROVIDER_MIN_CONTENT_CHARS = int(os.getenv("PROVIDER_MIN_CONTENT_CHARS", "100"))
PROVIDER_COOLDOWN_SECONDS = float(os.getenv("PROVIDER_COOLDOWN_SECONDS", "60"))

ENDPOINTS = ProviderEndpoints.from_env()

DEFAULT_PROVIDER_ORDER: tuple[str, ...] = (
    "metadata_api",
    "json_proxy",
    "raw_proxy",
    "direct",
)

ProviderFn = Callable[..., RawPayload]

_cooldowns: TLRUCache[str, float] = TLRUCache(
    maxsize=64, ttu=lambda _key, seconds, now: now + seconds
)


@dataclass(frozen=True)
class ProviderStrategy:
    name: str
    fetcher: ProviderFn

    def fetch(
        self,
        url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> RawPayload:
        return self.fetcher(url, session=session, timeout=timeout)


class ProviderRegistry:
    def __init__(self, strategies: Iterable[ProviderStrategy]):
        self._strategies: dict[str, ProviderStrategy] = {
            strategy.name: strategy for strategy in strategies
        }

    def get(self, name: str) -> Optional[ProviderStrategy]:
        return self._strategies.get(name)

    def ordered(self, names: Iterable[str]) -> list[ProviderStrategy]:
        seen: set[str] = set()
        ordered: list[ProviderStrategy] = []
        for name in names:
            if name in seen:
                continue
            strategy = self.get(name)
            if strategy is None:
                logger.warning(event="provider_unknown", provider=name)
                continue
            ordered.append(strategy)
            seen.add(name)
        return ordered


def configured_provider_order() -> list[str]:
    raw = os.getenv("PROVIDER_ORDER", "")
    names = [value.strip() for value in raw.split(",") if value.strip()]
    return names or list(DEFAULT_PROVIDER_ORDER)


def build_provider_chain(names: Optional[Iterable[str]] = None) -> list[ProviderStrategy]:
    requested = list(names or configured_provider_order())
    chain = PROVIDER_REGISTRY.ordered(requested)
    if not chain:
        # An empty chain would fail every extraction with no causes at all.
        logger.warning(
            event="provider_order_fallback",
            requested=requested,
            fallback=list(DEFAULT_PROVIDER_ORDER),
        )
        chain = PROVIDER_REGISTRY.ordered(DEFAULT_PROVIDER_ORDER)
    return chain


def is_cooling_down(name: str) -> bool:
    return name in _cooldowns


def start_cooldown(name: str, retry_after: Optional[float] = None) -> None:
    if PROVIDER_COOLDOWN_SECONDS <= 0:
        return
    seconds = max(PROVIDER_COOLDOWN_SECONDS, retry_after or 0.0)
    _cooldowns[name] = seconds
    logger.info(event="provider_cooldown_started", provider=name, seconds=seconds)


def clear_cooldowns() -> None:
    _cooldowns.clear()


def _target(template: str, url: str) -> str:
    return template.format(url=quote(url, safe=""))


def _ensure_min_content(provider: str, text: str, url: str) -> None:
    if len(text.strip()) < PROVIDER_MIN_CONTENT_CHARS:
        raise ProviderError(
            ProviderErrorKind.EMPTY_CONTENT,
            f"Payload carried {len(text.strip())} chars of text "
            f"(minimum: {PROVIDER_MIN_CONTENT_CHARS})",
            provider=provider,
            url=url,
        )


def _decode_json(provider: str, text: str, url: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            f"Response was not valid JSON: {exc}",
            provider=provider,
            url=url,
        ) from exc


def _html_payload(provider: str, url: str, html: str) -> RawPayload:
    _ensure_min_content(provider, html_to_text(html), url)
    return RawPayload(provider=provider, kind=PAYLOAD_HTML, html=html)


def _fetch_via_metadata_api(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> RawPayload:
    """Structured article metadata: ``{success, data: {title, ..., content}}``."""
    provider = "metadata_api"
    response = http_get(
        _target(ENDPOINTS.metadata_api, url),
        provider=provider,
        session=session,
        timeout=timeout,
        accept=JSON_ACCEPT_HEADER,
    )
    payload = _decode_json(provider, response.text, url)
    if not isinstance(payload, Mapping):
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            "Unexpected metadata response shape",
            provider=provider,
            url=url,
        )

    succeeded = payload.get("success") is True or payload.get("status") == "success"
    data = payload.get("data")
    if not succeeded or not isinstance(data, Mapping):
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            "Metadata service reported failure",
            provider=provider,
            url=url,
        )

    _ensure_min_content(provider, html_to_text(str(data.get("content") or "")), url)
    return RawPayload(
        provider=provider,
        kind=PAYLOAD_METADATA,
        data=dict(data),
    )


def _fetch_via_json_proxy(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> RawPayload:
    """Proxy that wraps the page body in JSON: ``{contents, status}``."""
    provider = "json_proxy"
    response = http_get(
        _target(ENDPOINTS.json_proxy, url),
        provider=provider,
        session=session,
        timeout=timeout,
        accept=JSON_ACCEPT_HEADER,
    )
    payload = _decode_json(provider, response.text, url)
    contents = payload.get("contents") if isinstance(payload, Mapping) else None
    if not isinstance(contents, str):
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            "Proxy response had no page contents",
            provider=provider,
            url=url,
        )

    status = payload.get("status")
    upstream_code = status.get("http_code") if isinstance(status, Mapping) else None
    if upstream_code == 429:
        raise ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            "Upstream rate limited: HTTP 429",
            provider=provider,
            url=url,
        )
    if isinstance(upstream_code, int) and upstream_code >= 400:
        raise ProviderError(
            ProviderErrorKind.FETCH_FAILED,
            f"Upstream responded with HTTP {upstream_code}",
            provider=provider,
            url=url,
        )
    return _html_payload(provider, url, contents)


def _fetch_via_raw_proxy(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> RawPayload:
    provider = "raw_proxy"
    response = http_get(
        _target(ENDPOINTS.raw_proxy, url),
        provider=provider,
        session=session,
        timeout=timeout,
    )
    return _html_payload(provider, url, response.text)


def _fetch_direct(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> RawPayload:
    provider = "direct"
    response = http_get(url, provider=provider, session=session, timeout=timeout)
    if response.final_url != url:
        logger.info(
            event="provider.redirected",
            provider=provider,
            url=url,
            final_url=response.final_url,
        )
    return _html_payload(provider, url, response.text)


PROVIDER_REGISTRY = ProviderRegistry(
    [
        ProviderStrategy("metadata_api", _fetch_via_metadata_api),
        ProviderStrategy("json_proxy", _fetch_via_json_proxy),
        ProviderStrategy("raw_proxy", _fetch_via_raw_proxy),
        ProviderStrategy("direct", _fetch_direct),
    ]
)
