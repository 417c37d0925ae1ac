from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Optional

from audicle.utils.text_cleaner import html_to_text

DEFAULT_TITLE = "Untitled Article"

PAYLOAD_METADATA = "metadata"
PAYLOAD_HTML = "html"


@dataclass(frozen=True)
class ArticleRecord:
    """Immutable result of one successful extraction."""

    title: str
    content: str
    url: str
    site_name: str = ""
    publish_date: str = ""
    author: str = ""
    description: str = ""
    provider: str = ""

    def __post_init__(self) -> None:
        # Optional metadata is always readable as a string.
        for name in ("site_name", "publish_date", "author", "description", "provider"):
            value = getattr(self, name)
            object.__setattr__(self, name, str(value).strip() if value else "")
        title = str(self.title).strip() if self.title else ""
        object.__setattr__(self, "title", title or DEFAULT_TITLE)

    @property
    def plain_text(self) -> str:
        return html_to_text(self.content)

    def to_dict(self) -> dict[str, str]:
        return {
            "title": self.title,
            "content": self.content,
            "url": self.url,
            "siteName": self.site_name,
            "publishDate": self.publish_date,
            "author": self.author,
            "description": self.description,
            "provider": self.provider,
        }


@dataclass(frozen=True)
class RawPayload:
    """What a provider adapter hands back before normalisation."""

    provider: str
    kind: str
    html: str = ""
    data: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_html(self) -> bool:
        return self.kind == PAYLOAD_HTML


@dataclass(frozen=True)
class AttemptFailure:
    provider: str
    kind: str
    message: str
    elapsed_ms: int = 0

    @classmethod
    def from_error(
        cls, provider: str, error: Exception, elapsed_ms: int = 0
    ) -> AttemptFailure:
        kind = getattr(getattr(error, "kind", None), "value", None)
        return cls(
            provider=provider,
            kind=kind or error.__class__.__name__,
            message=str(error),
            elapsed_ms=elapsed_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExtractionAttemptLog(list):
    """Ordered provider failures for one chain run; diagnostics only."""

    def record(self, failure: AttemptFailure) -> None:
        self.append(failure)


@dataclass(frozen=True)
class ProviderResult:
    provider: str
    record: Optional[ArticleRecord] = None
    error: Optional[Exception] = None

    def __post_init__(self) -> None:
        if (self.record is None) == (self.error is None):
            raise ValueError("ProviderResult holds exactly one of record or error")

    @classmethod
    def success(cls, provider: str, record: ArticleRecord) -> ProviderResult:
        return cls(provider=provider, record=record)

    @classmethod
    def failure(cls, provider: str, error: Exception) -> ProviderResult:
        return cls(provider=provider, error=error)

    @property
    def ok(self) -> bool:
        return self.record is not None

