import threading

import pytest

from audicle.models.article import PAYLOAD_HTML, RawPayload
from audicle.models.audio import ProcessingStatus
from audicle.services import pipeline
from audicle.services.audio_store import SLOT_ARTICLE, SLOT_SUMMARY, AudioStore
from audicle.services.credentials import CredentialStore
from audicle.services.exceptions import MissingCredential, RemoteServiceError, RequestSuperseded
from audicle.services.extraction import RequestGenerations
from audicle.services.providers import ProviderStrategy
from audicle.services.tts import SynthesisResult
from conftest import ARTICLE_HTML


def _chain():
    def fetch(url, *, session=None, timeout=None):
        return RawPayload(provider="stub", kind=PAYLOAD_HTML, html=ARTICLE_HTML)

    return [ProviderStrategy("stub", fetch)]


class FakeSpeech:
    def __init__(self, on_call=None, fail_on=None):
        self.texts = []
        self.on_call = on_call
        self.fail_on = fail_on

    def synthesize(self, text):
        self.texts.append(text)
        if self.on_call is not None:
            self.on_call(len(self.texts))
        if self.fail_on == len(self.texts):
            raise RemoteServiceError("elevenlabs", "boom", status_code=500)
        return SynthesisResult(
            audio=b"ID3" + str(len(self.texts)).encode(),
            content_type="audio/mpeg",
            duration_seconds=1.0,
            duration_estimated=False,
            characters=len(text),
            truncated=False,
            voice_id="voice-1",
        )


@pytest.fixture()
def env(tmp_path):
    credentials = CredentialStore(tmp_path / "credentials.json")
    return {
        "credentials": credentials,
        "store": AudioStore(tmp_path / "audio"),
        "generations": RequestGenerations(),
        "providers_chain": _chain(),
    }


def test_convert_without_summary(env):
    speech = FakeSpeech()
    statuses = []

    result = pipeline.convert_article(
        "example.com/post",
        owner="client",
        summarize=False,
        speech_client=speech,
        on_status=statuses.append,
        **env,
    )

    assert result.status is ProcessingStatus.READY
    assert result.summary is None and result.summary_audio is None
    assert speech.texts[0].startswith("Quiet Rivers")
    assert env["store"].current("client", SLOT_ARTICLE) == result.article_audio
    assert statuses == [
        ProcessingStatus.EXTRACTING,
        ProcessingStatus.CONVERTING,
        ProcessingStatus.READY,
    ]
    assert result.to_dict()["articleAudio"]["url"].startswith("/audio/")


def test_convert_with_degraded_summary_narrates_both(env):
    speech = FakeSpeech()

    result = pipeline.convert_article(
        "example.com/post", owner="client", summarize=True, speech_client=speech, **env
    )

    assert result.summary_degraded is True
    assert "Quiet Rivers" in result.summary
    assert len(speech.texts) == 2
    assert speech.texts[1] == result.summary
    assert env["store"].current("client", SLOT_SUMMARY) == result.summary_audio


def test_repeat_conversion_releases_previous_audio(env):
    store = env["store"]
    first = pipeline.convert_article(
        "example.com/post", owner="client", summarize=True, speech_client=FakeSpeech(), **env
    )
    second = pipeline.convert_article(
        "example.com/post", owner="client", summarize=False, speech_client=FakeSpeech(), **env
    )

    assert store.get(first.article_audio.audio_id) is None
    assert store.get(first.summary_audio.audio_id) is None
    assert store.current("client", SLOT_ARTICLE) == second.article_audio
    assert store.current("client", SLOT_SUMMARY) is None


def test_superseded_request_releases_its_audio(env):
    store = env["store"]
    generations = env["generations"]

    def newer_request_arrives(call_number):
        generations.begin("client")

    speech = FakeSpeech(on_call=newer_request_arrives)

    with pytest.raises(RequestSuperseded):
        pipeline.convert_article(
            "example.com/post", owner="client", summarize=False, speech_client=speech, **env
        )

    assert store.current("client", SLOT_ARTICLE) is None
    assert list((store.root).glob("*")) == []


def test_speech_failure_surfaces_and_cleans_up(env):
    store = env["store"]
    speech = FakeSpeech(fail_on=2)

    with pytest.raises(RemoteServiceError):
        pipeline.convert_article(
            "example.com/post", owner="client", summarize=True, speech_client=speech, **env
        )

    assert list(store.root.glob("*")) == []
    assert store.current("client", SLOT_ARTICLE) is None


def test_missing_speech_key_raises_missing_credential(env):
    with pytest.raises(MissingCredential):
        pipeline.convert_article("example.com/post", owner="client", summarize=False, **env)
    assert env["generations"].current("client") is None


def test_missing_speech_key_skips_extraction(env):
    calls = []

    def fetch(url, *, session=None, timeout=None):
        calls.append(url)
        return RawPayload(provider="stub", kind=PAYLOAD_HTML, html=ARTICLE_HTML)

    env["providers_chain"] = [ProviderStrategy("stub", fetch)]

    with pytest.raises(MissingCredential) as excinfo:
        pipeline.convert_article("example.com/post", owner="client", summarize=True, **env)

    assert excinfo.value.credential == "elevenlabs-api-key"
    assert calls == []


class ResetRacingStore(AudioStore):
    """Starts a reset for the owner from another thread during assignment."""

    def __init__(self, root, generations):
        super().__init__(root)
        self.generations = generations
        self.reset_thread = None
        self.reset_blocked = None

    def assign(self, owner, slot, audio):
        if self.reset_thread is None:
            self.reset_thread = threading.Thread(
                target=self.generations.supersede,
                args=(owner, lambda: self.reset(owner)),
            )
            self.reset_thread.start()
            self.reset_thread.join(timeout=0.2)
            self.reset_blocked = self.reset_thread.is_alive()
        return super().assign(owner, slot, audio)


def test_reset_waits_for_publish_and_then_clears_it(env, tmp_path):
    generations = env["generations"]
    store = ResetRacingStore(tmp_path / "racing", generations)
    env["store"] = store

    result = pipeline.convert_article(
        "example.com/post", owner="client", summarize=False, speech_client=FakeSpeech(), **env
    )
    store.reset_thread.join(timeout=5)

    assert store.reset_blocked is True
    assert result.status is ProcessingStatus.READY
    assert store.current("client", SLOT_ARTICLE) is None
    assert store.get(result.article_audio.audio_id) is None
    assert list(store.root.glob("*")) == []


def test_stale_run_cannot_publish_after_final_stage(env, monkeypatch):
    store = env["store"]
    generations = env["generations"]
    original_publish = generations.publish

    def newer_request_then_publish(generation, fn):
        generations.begin("client")
        return original_publish(generation, fn)

    monkeypatch.setattr(generations, "publish", newer_request_then_publish)

    with pytest.raises(RequestSuperseded):
        pipeline.convert_article(
            "example.com/post", owner="client", summarize=False, speech_client=FakeSpeech(), **env
        )

    assert store.current("client", SLOT_ARTICLE) is None
    assert list(store.root.glob("*")) == []
