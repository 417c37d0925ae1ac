import io
import os
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional

import requests
import structlog
from pydub import AudioSegment  # type: ignore[import-untyped]

from audicle.config import SpeechConfig
from audicle.services.exceptions import MissingCredential, RemoteServiceError

logger = structlog.get_logger(__name__)

ELEVENLABS_CREDENTIAL = "elevenlabs-api-key"
AUDIO_METADATA_TIMEOUT_SECONDS = float(os.getenv("AUDIO_METADATA_TIMEOUT_SECONDS", "5"))
# Rough narration speed used when the real duration cannot be read.
ESTIMATED_CHARS_PER_SECOND = 20.0

_SENTENCE_END = re.compile(r"[.!?]")
_duration_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="audio-duration")

_session_lock = threading.Lock()
_session: requests.Session | None = None


def _get_session() -> requests.Session:
    """One pooled session for every speech request in the process."""
    global _session
    if _session is not None:
        return _session
    with _session_lock:
        if _session is None:
            _session = requests.Session()
    return _session


@dataclass(frozen=True)
class SynthesisResult:
    audio: bytes
    content_type: str
    duration_seconds: float
    duration_estimated: bool
    characters: int
    truncated: bool
    voice_id: str


def truncate_for_speech(text: str, limit: int) -> str:
    """Cut ``text`` to at most ``limit`` chars, preferring a sentence boundary."""
    text = (text or "").strip()
    if limit <= 0 or len(text) <= limit:
        return text

    window = text[:limit]
    last_terminator = -1
    for match in _SENTENCE_END.finditer(window):
        last_terminator = match.end()
    if last_terminator > 0:
        return window[:last_terminator].strip()

    last_space = max(window.rfind(" "), window.rfind("\n"), window.rfind("\t"))
    if last_space > 0:
        return window[:last_space].strip()
    return window


def _decode_duration(audio: bytes) -> float:
    segment = AudioSegment.from_file(io.BytesIO(audio), format="mp3")
    return len(segment) / 1000.0


def audio_duration(
    audio: bytes, text: str, timeout: Optional[float] = None
) -> tuple[float, bool]:
    """Return ``(seconds, estimated)`` for synthesised audio."""
    wait = AUDIO_METADATA_TIMEOUT_SECONDS if timeout is None else timeout
    future = _duration_pool.submit(_decode_duration, audio)
    try:
        seconds = future.result(timeout=wait)
        if seconds > 0:
            return seconds, False
    except FutureTimeout:
        future.cancel()
        logger.warning(event="tts.duration_timeout", timeout=wait)
    except Exception as exc:
        logger.warning(
            event="tts.duration_unreadable",
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
    return len(text) / ESTIMATED_CHARS_PER_SECOND, True


class SpeechClient:
    """ElevenLabs text-to-speech over plain HTTPS."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        config: Optional[SpeechConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.config = config or SpeechConfig.from_env()
        self.session = session or _get_session()

    @property
    def endpoint(self) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/v1/text-to-speech/{self.config.voice_id}"

    def synthesize(self, text: str) -> SynthesisResult:
        if not self.api_key:
            raise MissingCredential(ELEVENLABS_CREDENTIAL)

        spoken = truncate_for_speech(text, self.config.max_chars)
        truncated = len(spoken) < len((text or "").strip())
        if not spoken:
            raise RemoteServiceError("elevenlabs", "No text to synthesise")

        payload = {
            "text": spoken,
            "model_id": self.config.model_id,
            "voice_settings": {
                "stability": self.config.stability,
                "similarity_boost": self.config.similarity_boost,
            },
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

        logger.info(
            event="tts.request",
            voice_id=self.config.voice_id,
            chars=len(spoken),
            truncated=truncated,
        )
        try:
            response = self.session.post(
                self.endpoint,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.error(event="tts.transport_error", error=str(exc))
            raise RemoteServiceError(
                "elevenlabs", f"Speech request failed: {exc}"
            ) from exc

        if not 200 <= response.status_code < 300:
            logger.error(
                event="tts.bad_status",
                status=response.status_code,
                body=(response.text or "")[:200],
            )
            raise RemoteServiceError(
                "elevenlabs",
                f"Speech service responded with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        audio = response.content or b""
        if not audio:
            raise RemoteServiceError(
                "elevenlabs", "Speech service returned no audio", status_code=response.status_code
            )

        duration, estimated = audio_duration(audio, spoken)
        logger.info(
            event="tts.complete",
            voice_id=self.config.voice_id,
            bytes=len(audio),
            duration_seconds=round(duration, 2),
            duration_estimated=estimated,
        )
        return SynthesisResult(
            audio=audio,
            content_type=response.headers.get("Content-Type", "audio/mpeg").split(";")[0],
            duration_seconds=duration,
            duration_estimated=estimated,
            characters=len(spoken),
            truncated=truncated,
            voice_id=self.config.voice_id,
        )
