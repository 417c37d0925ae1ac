from __future__ import annotations

import os
import re
import textwrap
from dataclasses import dataclass
from typing import Optional

import structlog
from openai import OpenAI, OpenAIError

from audicle.models.article import ArticleRecord
from audicle.services.exceptions import MissingCredential, RemoteServiceError

logger = structlog.get_logger(__name__)

OPENAI_CREDENTIAL = "openai-api-key"
SUMMARY_MODEL = os.getenv("SUMMARY_MODEL", "gpt-4o-mini")
SUMMARY_TEMPERATURE = float(os.getenv("SUMMARY_TEMPERATURE", "0.7"))
SUMMARY_MAX_TOKENS = int(os.getenv("SUMMARY_MAX_TOKENS", "500"))
SUMMARY_TIMEOUT_SECONDS = float(os.getenv("SUMMARY_TIMEOUT_SECONDS", "30"))
_MAX_INPUT_CHARS = max(2000, int(os.getenv("SUMMARY_MAX_INPUT_CHARS", "12000")))
_SUMMARY_WORD_LIMIT = max(50, int(os.getenv("SUMMARY_MAX_WORDS", "350")))

SYSTEM_PROMPT = textwrap.dedent(
    f"""
    You are an expert podcast script writer who can distill complex articles into
    engaging, concise summaries. Create a podcast-style summary of the provided
    article that can be narrated in under 2 minutes (no more than
    {_SUMMARY_WORD_LIMIT} words).

    Your summary should:
    1. Begin with an engaging podcast-style introduction
    2. Capture the main points and key insights of the article
    3. Maintain a conversational tone suitable for audio
    4. Include a brief conclusion that wraps up the main message
    5. Avoid unnecessary details while preserving the core value of the content

    Format the summary as a complete script ready to be read aloud.
    """
).strip()

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class SummaryResult:
    text: str
    degraded: bool = False


def _clip_text(text: str) -> str:
    if not text:
        return ""
    stripped = text.strip()
    if len(stripped) <= _MAX_INPUT_CHARS:
        return stripped
    return stripped[:_MAX_INPUT_CHARS]


def _truncate_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return text.strip()
    return " ".join(words[:limit]).strip() + "…"


class SummaryClient:
    """OpenAI chat-completions client producing a narrated summary script."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = SUMMARY_MODEL,
        word_limit: int = _SUMMARY_WORD_LIMIT,
        client: Optional[OpenAI] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.word_limit = word_limit
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=SUMMARY_TIMEOUT_SECONDS)
        return self._client

    def summarize(self, article: ArticleRecord) -> str:
        if not self.api_key:
            raise MissingCredential(OPENAI_CREDENTIAL)

        body = _clip_text(article.plain_text)
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": f"{article.title}\n\n{body}"},
                ],
                temperature=SUMMARY_TEMPERATURE,
                max_tokens=SUMMARY_MAX_TOKENS,
            )
        except OpenAIError as exc:
            status_code = getattr(exc, "status_code", None)
            # structlog uses the positional argument for the event name; keep ``event`` keyword-only.
            logger.error(
                event="ai_provider_error",
                operation="summary.request",
                provider="openai",
                status=status_code,
                error=str(exc),
            )
            raise RemoteServiceError(
                "openai", f"Summary request failed: {exc}", status_code=status_code
            ) from exc

        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = (getattr(message, "content", None) or "").strip()
        if not content:
            raise RemoteServiceError("openai", "Summary response was empty")
        return _truncate_words(content, self.word_limit)


def fallback_summary(article: ArticleRecord, word_limit: int = _SUMMARY_WORD_LIMIT) -> str:
    """Template a narratable summary from the article's leading sentences."""
    title = article.title
    intro = f'Welcome to The Crux. Today we are looking at "{title}".'
    outro = f"That has been the crux of {title}. Thanks for listening."

    budget = max(0, word_limit - len(intro.split()) - len(outro.split()))
    selected: list[str] = []
    used = 0
    text = article.plain_text.replace("\n", " ")
    for sentence in _SENTENCE_SPLIT.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        words = len(sentence.split())
        if used + words > budget:
            break
        selected.append(sentence)
        used += words

    if not selected and budget:
        selected.append(_truncate_words(text, budget))

    return "\n\n".join(part for part in (intro, " ".join(selected), outro) if part)


def generate_summary(
    article: ArticleRecord,
    api_key: Optional[str],
    *,
    client: Optional[SummaryClient] = None,
) -> SummaryResult:
    """Summarise via the remote model, degrading to a local template on failure."""
    summary_client = client or SummaryClient(api_key)
    try:
        return SummaryResult(text=summary_client.summarize(article))
    except MissingCredential:
        logger.info(
            event="ai_provider_skipped",
            operation="summary.request",
            provider="openai",
            reason="missing_api_key",
        )
    except RemoteServiceError as exc:
        logger.warning(
            event="summary_degraded",
            operation="summary.request",
            provider="openai",
            status=exc.status_code,
            error=str(exc),
        )
    return SummaryResult(text=fallback_summary(article), degraded=True)
