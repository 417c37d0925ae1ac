from dataclasses import asdict, dataclass
from enum import Enum


class ProcessingStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    EXTRACTING = "extracting"
    SUMMARIZING = "summarizing"
    CONVERTING = "converting"
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True)
class AudioRecord:
    """Handle to narrated audio held by the audio store."""

    audio_id: str
    content_type: str = "audio/mpeg"
    duration_seconds: float = 0.0
    duration_estimated: bool = False
    characters: int = 0
    truncated: bool = False
    voice_id: str = ""

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["url"] = f"/audio/{self.audio_id}"
        return payload
