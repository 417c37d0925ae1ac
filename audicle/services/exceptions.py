from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from audicle.models.article import AttemptFailure


class AudicleError(Exception):
    """Base class for errors surfaced by the article-to-audio pipeline."""

    user_message = "Something went wrong. Please try again."

    def __init__(self, message: str | None = None, *, url: str | None = None) -> None:
        super().__init__(message or self.user_message)
        self.url = url


class InvalidUrl(AudicleError):
    """User input could not be coerced into an absolute http(s) URL."""

    user_message = "Please enter a valid URL"


class ProviderErrorKind(str, Enum):
    FETCH_FAILED = "FetchFailed"
    EMPTY_CONTENT = "EmptyContent"
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"


class ProviderError(AudicleError):
    """A single retrieval channel failed to deliver usable content."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        *,
        provider: str | None = None,
        url: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.kind = kind
        self.provider = provider
        self.retry_after = retry_after

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, provider={self.provider!r}, message={str(self)!r})"


class InsufficientContent(AudicleError):
    """HTML parsed but no strategy produced enough article text."""

    user_message = "The page did not contain enough article content."


class AllProvidersFailed(AudicleError):
    """Every configured provider failed; ``causes`` keeps the ordered attempt log."""

    user_message = "Failed to extract article content. Please try a different URL."

    def __init__(
        self, causes: Sequence["AttemptFailure"], *, url: str | None = None
    ) -> None:
        super().__init__(self.user_message, url=url)
        self.causes = list(causes)


class MissingCredential(AudicleError):
    """An API key required by a remote collaborator is absent."""

    user_message = "An API key is required for this feature."

    def __init__(self, credential: str) -> None:
        super().__init__(f"Missing credential: {credential}")
        self.credential = credential


class RemoteServiceError(AudicleError):
    """The summarizer or speech service answered with an error or not at all."""

    user_message = "A remote service failed to respond. Please try again."

    def __init__(
        self, service: str, message: str, *, status_code: int | None = None
    ) -> None:
        super().__init__(message)
        self.service = service
        self.status_code = status_code


class RequestSuperseded(AudicleError):
    """A newer request for the same client started before this one finished."""

    user_message = "A newer request replaced this one."


__all__ = [
    "AudicleError",
    "InvalidUrl",
    "ProviderErrorKind",
    "ProviderError",
    "InsufficientContent",
    "AllProvidersFailed",
    "MissingCredential",
    "RemoteServiceError",
    "RequestSuperseded",
]
