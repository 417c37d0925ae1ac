import json
import threading

import pytest

from audicle.models.article import PAYLOAD_HTML, RawPayload
from audicle.services import extraction, providers
from audicle.services.exceptions import (
    AllProvidersFailed,
    InvalidUrl,
    ProviderError,
    ProviderErrorKind,
)
from audicle.services.providers import ProviderStrategy
from conftest import ARTICLE_HTML, FakeResponse, FakeSession


class RecordingFetcher:
    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = []

    def __call__(self, url, *, session=None, timeout=None):
        self.calls.append(url)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return RawPayload(provider=self.name, kind=PAYLOAD_HTML, html=self.outcome)

    def strategy(self):
        return ProviderStrategy(self.name, self)


def _failing(name, kind=ProviderErrorKind.FETCH_FAILED):
    return RecordingFetcher(name, ProviderError(kind, f"{name} failed", provider=name))


def test_first_success_short_circuits_the_chain():
    fetchers = [
        _failing("one"),
        _failing("two", ProviderErrorKind.TIMEOUT),
        RecordingFetcher("three", ARTICLE_HTML),
        RecordingFetcher("four", ARTICLE_HTML),
    ]

    record = extraction.extract_article(
        "example.com/post", [fetcher.strategy() for fetcher in fetchers]
    )

    assert record.provider == "three"
    assert record.url == "https://example.com/post"
    assert [len(fetcher.calls) for fetcher in fetchers] == [1, 1, 1, 0]


def test_all_failures_report_one_cause_per_provider():
    fetchers = [
        _failing("one"),
        RecordingFetcher("two", "<html><body><p>thin</p></body></html>"),
        _failing("three", ProviderErrorKind.TIMEOUT),
    ]

    with pytest.raises(AllProvidersFailed) as excinfo:
        extraction.extract_article(
            "https://example.com/post", [fetcher.strategy() for fetcher in fetchers]
        )

    causes = excinfo.value.causes
    assert [cause.provider for cause in causes] == ["one", "two", "three"]
    assert [cause.kind for cause in causes] == ["FetchFailed", "EmptyContent", "Timeout"]
    assert excinfo.value.user_message == (
        "Failed to extract article content. Please try a different URL."
    )


def test_unexpected_provider_exception_is_recorded_not_raised():
    broken = RecordingFetcher("broken", ValueError("boom"))
    good = RecordingFetcher("good", ARTICLE_HTML)

    record = extraction.extract_article(
        "https://example.com/post", [broken.strategy(), good.strategy()]
    )

    assert record.provider == "good"


def test_invalid_url_fails_before_any_provider_runs():
    fetcher = RecordingFetcher("one", ARTICLE_HTML)

    with pytest.raises(InvalidUrl):
        extraction.extract_article("not a url!!", [fetcher.strategy()])

    assert fetcher.calls == []


def test_rate_limited_provider_is_skipped_while_cooling_down():
    limited = _failing("limited", ProviderErrorKind.RATE_LIMITED)
    good = RecordingFetcher("good", ARTICLE_HTML)
    chain = [limited.strategy(), good.strategy()]

    extraction.extract_article("https://example.com/post", chain)
    extraction.extract_article("https://example.com/post", chain)

    assert len(limited.calls) == 1
    assert len(good.calls) == 2
    assert providers.is_cooling_down("limited")


def test_cooling_provider_still_counts_as_a_cause():
    providers.start_cooldown("limited")
    limited = _failing("limited", ProviderErrorKind.RATE_LIMITED)

    with pytest.raises(AllProvidersFailed) as excinfo:
        extraction.extract_article("https://example.com/post", [limited.strategy()])

    assert [cause.kind for cause in excinfo.value.causes] == ["RateLimited"]
    assert limited.calls == []


def test_end_to_end_falls_back_to_second_provider():
    session = FakeSession(
        {
            "api.microlink.io": FakeResponse(500, text="server error"),
            "allorigins.win/get": FakeResponse(
                200,
                text=json.dumps({"contents": ARTICLE_HTML, "status": {"http_code": 200}}),
            ),
        }
    )
    chain = providers.build_provider_chain(["metadata_api", "json_proxy", "direct"])

    record = extraction.extract_article("example.com/post", chain, session=session)

    assert record.url == "https://example.com/post"
    assert record.title == "Quiet Rivers"
    assert record.provider == "json_proxy"
    assert record.site_name == "Example News"
    assert "Floodplains collect the sediment" in record.plain_text
    assert "<script" not in record.content
    assert len(session.calls) == 2


def test_request_generations_latest_wins_per_scope():
    generations = extraction.RequestGenerations()

    first = generations.begin("client-a")
    other = generations.begin("client-b")
    second = generations.begin("client-a")

    assert not first.is_current()
    assert second.is_current()
    assert other.is_current()

    generations.supersede("client-a", lambda: None)
    assert not second.is_current()
    assert other.is_current()


def test_request_generations_are_unique_across_threads():
    generations = extraction.RequestGenerations()
    numbers = []
    lock = threading.Lock()

    def worker():
        for _ in range(50):
            generation = generations.begin("shared")
            with lock:
                numbers.append(generation.number)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(numbers)) == 200
    assert generations.current("shared") == max(numbers)


def test_publish_runs_only_for_the_latest_generation():
    generations = extraction.RequestGenerations()
    stale = generations.begin("client")
    latest = generations.begin("client")
    published = []

    assert generations.publish(stale, lambda: published.append("stale")) == (False, None)
    assert generations.publish(latest, lambda: published.append("latest") or "done") == (
        True,
        "done",
    )
    assert published == ["latest"]


def test_supersede_invalidates_in_flight_generation_and_returns_result():
    generations = extraction.RequestGenerations()
    running = generations.begin("client")

    assert generations.supersede("client", lambda: ["a1"]) == ["a1"]
    assert not running.is_current()
    assert generations.publish(running, lambda: "late") == (False, None)
