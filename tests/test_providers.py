import json

import pytest

from audicle.models.article import PAYLOAD_HTML, PAYLOAD_METADATA
from audicle.services import providers
from audicle.services.exceptions import ProviderError, ProviderErrorKind
from conftest import FakeResponse, FakeSession

BODY = "<p>" + "A river runs through the valley and keeps on running. " * 4 + "</p>"


def test_metadata_api_returns_structured_payload():
    payload = {
        "status": "success",
        "data": {"title": "Remote", "content": BODY, "publisher": "Pub"},
    }
    session = FakeSession({"api.microlink.io": FakeResponse(200, text=json.dumps(payload))})

    raw = providers._fetch_via_metadata_api("https://example.com/post", session=session)

    assert raw.kind == PAYLOAD_METADATA
    assert raw.data["publisher"] == "Pub"
    assert "url=https%3A%2F%2Fexample.com%2Fpost" in session.calls[0][1]


def test_metadata_api_failure_flag_is_fetch_failure():
    payload = {"status": "fail", "data": None}
    session = FakeSession({"api.microlink.io": FakeResponse(200, text=json.dumps(payload))})

    with pytest.raises(ProviderError) as excinfo:
        providers._fetch_via_metadata_api("https://example.com/post", session=session)

    assert excinfo.value.kind is ProviderErrorKind.FETCH_FAILED


def test_json_proxy_unwraps_contents():
    payload = {"contents": f"<html><body>{BODY}</body></html>", "status": {"http_code": 200}}
    session = FakeSession({"allorigins.win/get": FakeResponse(200, text=json.dumps(payload))})

    raw = providers._fetch_via_json_proxy("https://example.com/post", session=session)

    assert raw.kind == PAYLOAD_HTML
    assert BODY in raw.html


@pytest.mark.parametrize(
    "http_code, kind",
    [(429, ProviderErrorKind.RATE_LIMITED), (404, ProviderErrorKind.FETCH_FAILED)],
)
def test_json_proxy_surfaces_upstream_status(http_code, kind):
    payload = {"contents": "", "status": {"http_code": http_code}}
    session = FakeSession({"allorigins.win/get": FakeResponse(200, text=json.dumps(payload))})

    with pytest.raises(ProviderError) as excinfo:
        providers._fetch_via_json_proxy("https://example.com/post", session=session)

    assert excinfo.value.kind is kind


def test_json_proxy_rejects_non_json():
    session = FakeSession({"allorigins.win/get": FakeResponse(200, text="<html>")})

    with pytest.raises(ProviderError) as excinfo:
        providers._fetch_via_json_proxy("https://example.com/post", session=session)

    assert excinfo.value.kind is ProviderErrorKind.FETCH_FAILED


def test_raw_proxy_and_direct_reject_thin_pages():
    session = FakeSession(default=FakeResponse(200, text="<html><body>hi</body></html>"))

    for fetcher in (providers._fetch_via_raw_proxy, providers._fetch_direct):
        with pytest.raises(ProviderError) as excinfo:
            fetcher("https://example.com/post", session=session)
        assert excinfo.value.kind is ProviderErrorKind.EMPTY_CONTENT


def test_direct_fetches_target_itself():
    session = FakeSession(default=FakeResponse(200, text=f"<html><body>{BODY}</body></html>"))

    raw = providers._fetch_direct("https://example.com/post", session=session)

    assert session.calls[0][1] == "https://example.com/post"
    assert raw.provider == "direct"


def test_build_provider_chain_orders_and_skips_unknown_names():
    chain = providers.build_provider_chain(["direct", "nope", "raw_proxy", "direct"])

    assert [strategy.name for strategy in chain] == ["direct", "raw_proxy"]


def test_configured_provider_order_reads_env(monkeypatch):
    monkeypatch.setenv("PROVIDER_ORDER", "raw_proxy, direct")
    assert providers.configured_provider_order() == ["raw_proxy", "direct"]

    monkeypatch.delenv("PROVIDER_ORDER")
    assert providers.configured_provider_order() == list(providers.DEFAULT_PROVIDER_ORDER)


def test_build_provider_chain_falls_back_when_no_name_is_known():
    chain = providers.build_provider_chain(["nope", "also-nope"])

    assert [strategy.name for strategy in chain] == list(providers.DEFAULT_PROVIDER_ORDER)


def test_unknown_provider_order_env_uses_default_chain(monkeypatch):
    monkeypatch.setenv("PROVIDER_ORDER", "typo_proxy")

    chain = providers.build_provider_chain()

    assert [strategy.name for strategy in chain] == list(providers.DEFAULT_PROVIDER_ORDER)


def test_cooldown_lifecycle(monkeypatch):
    providers.start_cooldown("json_proxy", retry_after=5)
    assert providers.is_cooling_down("json_proxy")
    assert not providers.is_cooling_down("direct")

    providers.clear_cooldowns()
    assert not providers.is_cooling_down("json_proxy")

    monkeypatch.setattr(providers, "PROVIDER_COOLDOWN_SECONDS", 0)
    providers.start_cooldown("json_proxy")
    assert not providers.is_cooling_down("json_proxy")
