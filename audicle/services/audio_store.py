from __future__ import annotations

import os
import threading
import uuid
from pathlib import Path
from typing import Optional

import structlog

from audicle.models.audio import AudioRecord
from audicle.services.tts import SynthesisResult

logger = structlog.get_logger(__name__)

SLOT_ARTICLE = "article"
SLOT_SUMMARY = "summary"
SLOTS = (SLOT_ARTICLE, SLOT_SUMMARY)

_EXTENSIONS = {"audio/mpeg": "mp3", "audio/ogg": "ogg", "audio/wav": "wav"}


class AudioStoreError(Exception):
    """Raised when audio bytes cannot be written to the store."""


class AudioStore:
    """Local directory of narrated audio, tracking which handle each client is playing."""

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self.root = Path(root)
        self._lock = threading.RLock()
        self._records: dict[str, AudioRecord] = {}
        self._assigned: dict[tuple[str, str], str] = {}

    def _file_for(self, record: AudioRecord) -> Path:
        extension = _EXTENSIONS.get(record.content_type, "bin")
        return self.root / f"{record.audio_id}.{extension}"

    def save(self, result: SynthesisResult) -> AudioRecord:
        record = AudioRecord(
            audio_id=uuid.uuid4().hex,
            content_type=result.content_type or "audio/mpeg",
            duration_seconds=round(result.duration_seconds, 2),
            duration_estimated=result.duration_estimated,
            characters=result.characters,
            truncated=result.truncated,
            voice_id=result.voice_id,
        )
        path = self._file_for(record)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(result.audio)
        except OSError as exc:
            logger.error(event="audio_store.write_failed", path=str(path), error=str(exc))
            raise AudioStoreError(f"Could not store audio: {exc}") from exc

        with self._lock:
            self._records[record.audio_id] = record
        logger.info(
            event="audio_store.saved", audio_id=record.audio_id, bytes=len(result.audio)
        )
        return record

    def get(self, audio_id: str) -> Optional[AudioRecord]:
        with self._lock:
            return self._records.get(audio_id)

    def path_for(self, audio_id: str) -> Optional[Path]:
        record = self.get(audio_id)
        if record is None:
            return None
        path = self._file_for(record)
        return path if path.exists() else None

    def release(self, audio_id: Optional[str]) -> bool:
        if not audio_id:
            return False
        with self._lock:
            record = self._records.pop(audio_id, None)
            for key, assigned in list(self._assigned.items()):
                if assigned == audio_id:
                    del self._assigned[key]
        if record is None:
            return False
        try:
            self._file_for(record).unlink()
        except FileNotFoundError:
            pass
        logger.info(event="audio_store.released", audio_id=audio_id)
        return True

    def current(self, owner: str, slot: str) -> Optional[AudioRecord]:
        with self._lock:
            audio_id = self._assigned.get((owner, slot))
            return self._records.get(audio_id) if audio_id else None

    def assign(self, owner: str, slot: str, audio: AudioRecord) -> None:
        """Make ``audio`` current for ``(owner, slot)`` and release what it replaces."""
        if slot not in SLOTS:
            raise ValueError(f"Unknown audio slot: {slot}")
        with self._lock:
            previous = self._assigned.get((owner, slot))
            self._assigned[(owner, slot)] = audio.audio_id
        if previous and previous != audio.audio_id:
            self.release(previous)

    def reset(self, owner: str) -> list[str]:
        with self._lock:
            owned = [
                audio_id
                for (key_owner, _slot), audio_id in self._assigned.items()
                if key_owner == owner
            ]
        for audio_id in owned:
            self.release(audio_id)
        return owned
