import pytest

from audicle.services.audio_store import SLOT_ARTICLE, SLOT_SUMMARY, AudioStore
from audicle.services.tts import SynthesisResult


def _result(audio=b"ID3audio"):
    return SynthesisResult(
        audio=audio,
        content_type="audio/mpeg",
        duration_seconds=3.14159,
        duration_estimated=False,
        characters=42,
        truncated=False,
        voice_id="voice-1",
    )


def test_save_writes_file_and_returns_record(tmp_path):
    store = AudioStore(tmp_path / "audio")

    record = store.save(_result())

    assert store.path_for(record.audio_id).read_bytes() == b"ID3audio"
    assert store.path_for(record.audio_id).suffix == ".mp3"
    assert record.duration_seconds == 3.14
    assert record.to_dict()["url"] == f"/audio/{record.audio_id}"


def test_assign_releases_superseded_audio(tmp_path):
    store = AudioStore(tmp_path)
    first = store.save(_result(b"one"))
    second = store.save(_result(b"two"))

    store.assign("client", SLOT_ARTICLE, first)
    first_path = store.path_for(first.audio_id)
    store.assign("client", SLOT_ARTICLE, second)

    assert store.current("client", SLOT_ARTICLE) == second
    assert store.get(first.audio_id) is None
    assert not first_path.exists()


def test_slots_and_owners_are_independent(tmp_path):
    store = AudioStore(tmp_path)
    article = store.save(_result())
    summary = store.save(_result())
    other = store.save(_result())

    store.assign("a", SLOT_ARTICLE, article)
    store.assign("a", SLOT_SUMMARY, summary)
    store.assign("b", SLOT_ARTICLE, other)

    assert sorted(store.reset("a")) == sorted([article.audio_id, summary.audio_id])
    assert store.current("a", SLOT_ARTICLE) is None
    assert store.current("b", SLOT_ARTICLE) == other


def test_release_removes_file_once(tmp_path):
    store = AudioStore(tmp_path)
    record = store.save(_result())

    assert store.release(record.audio_id) is True
    assert store.release(record.audio_id) is False
    assert store.path_for(record.audio_id) is None
    assert store.get(record.audio_id) is None
    assert list(store.root.glob("*")) == []


def test_assign_rejects_unknown_slot(tmp_path):
    store = AudioStore(tmp_path)

    with pytest.raises(ValueError):
        store.assign("a", "trailer", store.save(_result()))
