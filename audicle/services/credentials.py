from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

ELEVENLABS_KEY = "elevenlabs-api-key"
OPENAI_KEY = "openai-api-key"
CREDENTIAL_NAMES = (ELEVENLABS_KEY, OPENAI_KEY)


def _mask(value: str) -> str:
    if not value:
        return ""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:3]}{'*' * (len(value) - 7)}{value[-4:]}"


class CredentialStore:
    """Persistent store for the two third-party API keys."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._values: dict[str, str] = {name: "" for name in CREDENTIAL_NAMES}

    def load(self) -> CredentialStore:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return self
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(
                event="credentials.load_failed", path=str(self.path), error_type=exc.__class__.__name__
            )
            return self

        if isinstance(raw, dict):
            with self._lock:
                for name in CREDENTIAL_NAMES:
                    value = raw.get(name)
                    self._values[name] = value.strip() if isinstance(value, str) else ""
        logger.info(
            event="credentials.loaded",
            configured=[name for name in CREDENTIAL_NAMES if self._values[name]],
        )
        return self

    def get(self, name: str) -> str:
        if name not in CREDENTIAL_NAMES:
            raise KeyError(name)
        with self._lock:
            return self._values[name]

    def save(
        self, *, elevenlabs: Optional[str] = None, openai: Optional[str] = None
    ) -> None:
        """Update the given keys and persist. ``None`` leaves a key untouched; ``""`` clears it."""
        updates = {ELEVENLABS_KEY: elevenlabs, OPENAI_KEY: openai}
        with self._lock:
            snapshot = dict(self._values)
            for name, value in updates.items():
                if value is not None:
                    snapshot[name] = value.strip()

            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".credentials-", suffix=".json", dir=str(self.path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(snapshot, handle, indent=2)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except OSError:
                Path(tmp_name).unlink(missing_ok=True)
                raise
            # Memory only changes once the file on disk matches it.
            self._values = snapshot
        logger.info(
            event="credentials.saved",
            updated=[name for name, value in updates.items() if value is not None],
        )

    def masked(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                name: {"configured": bool(value), "masked": _mask(value)}
                for name, value in self._values.items()
            }
