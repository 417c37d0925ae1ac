from __future__ import annotations

import os
from dataclasses import dataclass

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class ProviderEndpoints:
    """URL templates for the remote retrieval channels; ``{url}`` is the quoted target."""

    metadata_api: str
    json_proxy: str
    raw_proxy: str

    @classmethod
    def from_env(cls) -> ProviderEndpoints:
        return cls(
            metadata_api=os.getenv(
                "METADATA_API_TEMPLATE", "https://api.microlink.io/?url={url}"
            ),
            json_proxy=os.getenv(
                "JSON_PROXY_TEMPLATE", "https://api.allorigins.win/get?url={url}"
            ),
            raw_proxy=os.getenv(
                "RAW_PROXY_TEMPLATE", "https://api.allorigins.win/raw?url={url}"
            ),
        )


@dataclass(frozen=True)
class SpeechConfig:
    """Typed configuration for the ElevenLabs speech service."""

    base_url: str
    voice_id: str
    model_id: str
    max_chars: int
    stability: float
    similarity_boost: float
    timeout_seconds: float

    @classmethod
    def from_env(cls) -> SpeechConfig:
        def _float(name: str, default: float) -> float:
            try:
                return float(os.getenv(name, default))
            except (TypeError, ValueError):
                return default

        try:
            max_chars = int(os.getenv("TTS_MAX_CHARS", "5000"))
        except ValueError:
            max_chars = 5000
        return cls(
            base_url=os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io"),
            voice_id=os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM"),
            model_id=os.getenv("ELEVENLABS_MODEL_ID", "eleven_monolingual_v1"),
            max_chars=max_chars,
            stability=_float("ELEVENLABS_STABILITY", 0.5),
            similarity_boost=_float("ELEVENLABS_SIMILARITY_BOOST", 0.75),
            timeout_seconds=_float("TTS_TIMEOUT_SECONDS", 60.0),
        )


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    ENV: str = "development"
    SECRET_KEY: str = "dev"
    ALLOWED_ORIGINS: str = ""
    INSTANCE_DIR: str | None = None
    RATELIMIT_DEFAULT: str = "200 per day;50 per hour"
    RATELIMIT_CONVERSIONS: str = "10 per minute"
    RATELIMIT_STORAGE_URI: str = "memory://"

    @property
    def allowed_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]


def load_settings() -> AppSettings:
    return AppSettings()
