from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import requests
import structlog

from audicle.models.article import ArticleRecord
from audicle.models.audio import AudioRecord, ProcessingStatus
from audicle.services.audio_store import SLOT_ARTICLE, SLOT_SUMMARY, AudioStore
from audicle.services.credentials import ELEVENLABS_KEY, OPENAI_KEY, CredentialStore
from audicle.services.exceptions import MissingCredential, RequestSuperseded
from audicle.services.extraction import Generation, RequestGenerations, extract_article
from audicle.services.providers import ProviderStrategy
from audicle.services.summarizer import SummaryClient, generate_summary
from audicle.services.tts import SpeechClient

logger = structlog.get_logger(__name__)

StatusCallback = Callable[[ProcessingStatus], None]


@dataclass(frozen=True)
class ConversionResult:
    article: ArticleRecord
    summary: Optional[str]
    summary_degraded: bool
    article_audio: AudioRecord
    summary_audio: Optional[AudioRecord]
    status: ProcessingStatus = ProcessingStatus.READY

    def to_dict(self) -> dict:
        return {
            "article": self.article.to_dict(),
            "summary": self.summary,
            "summaryDegraded": self.summary_degraded,
            "articleAudio": self.article_audio.to_dict(),
            "summaryAudio": self.summary_audio.to_dict() if self.summary_audio else None,
            "status": self.status.value,
        }


class _Run:
    """Bookkeeping for one conversion: stale checks and cleanup of produced audio."""

    def __init__(
        self,
        generation: Generation,
        store: AudioStore,
        on_status: Optional[StatusCallback],
    ) -> None:
        self.generation = generation
        self.store = store
        self.on_status = on_status
        self.produced: list[AudioRecord] = []

    def status(self, status: ProcessingStatus) -> None:
        logger.info(
            event="pipeline.status",
            owner=self.generation.scope,
            generation=self.generation.number,
            status=status.value,
        )
        if self.on_status is not None:
            self.on_status(status)

    def checkpoint(self, stage: str) -> None:
        if self.generation.is_current():
            return
        logger.info(
            event="pipeline.superseded",
            owner=self.generation.scope,
            generation=self.generation.number,
            stage=stage,
        )
        self.discard()
        raise RequestSuperseded()

    def discard(self) -> None:
        for record in self.produced:
            self.store.release(record.audio_id)
        self.produced.clear()


def convert_article(
    url: str,
    *,
    owner: str,
    summarize: bool,
    credentials: CredentialStore,
    store: AudioStore,
    generations: RequestGenerations,
    providers_chain: Optional[Iterable[ProviderStrategy]] = None,
    summary_client: Optional[SummaryClient] = None,
    speech_client: Optional[SpeechClient] = None,
    session: Optional[requests.Session] = None,
    on_status: Optional[StatusCallback] = None,
) -> ConversionResult:
    """Extract, optionally summarise, then narrate ``url`` for ``owner``.

    Only the newest request per owner may publish audio; older runs stop at the
    next stage boundary, release what they produced and raise ``RequestSuperseded``.
    """
    if speech_client is None and not credentials.get(ELEVENLABS_KEY):
        raise MissingCredential(ELEVENLABS_KEY)

    run = _Run(generations.begin(owner), store, on_status)
    started = time.perf_counter()

    try:
        run.status(ProcessingStatus.EXTRACTING)
        article = extract_article(url, providers_chain, session=session)
        run.checkpoint("extract")

        summary_text: Optional[str] = None
        summary_degraded = False
        if summarize:
            run.status(ProcessingStatus.SUMMARIZING)
            summary = generate_summary(
                article, credentials.get(OPENAI_KEY), client=summary_client
            )
            summary_text, summary_degraded = summary.text, summary.degraded
            run.checkpoint("summarize")

        run.status(ProcessingStatus.CONVERTING)
        speech = speech_client or SpeechClient(credentials.get(ELEVENLABS_KEY))
        article_audio = store.save(speech.synthesize(article.plain_text))
        run.produced.append(article_audio)
        run.checkpoint("speech.article")

        summary_audio: Optional[AudioRecord] = None
        if summary_text:
            summary_audio = store.save(speech.synthesize(summary_text))
            run.produced.append(summary_audio)
            run.checkpoint("speech.summary")
    except RequestSuperseded:
        raise
    except Exception:
        run.discard()
        run.status(ProcessingStatus.ERROR)
        raise

    def assign_slots() -> None:
        store.assign(owner, SLOT_ARTICLE, article_audio)
        if summary_audio is not None:
            store.assign(owner, SLOT_SUMMARY, summary_audio)
        else:
            previous = store.current(owner, SLOT_SUMMARY)
            if previous is not None:
                store.release(previous.audio_id)

    published, _ = generations.publish(run.generation, assign_slots)
    if not published:
        logger.info(
            event="pipeline.superseded",
            owner=owner,
            generation=run.generation.number,
            stage="publish",
        )
        run.discard()
        raise RequestSuperseded()

    run.status(ProcessingStatus.READY)
    logger.info(
        event="pipeline.complete",
        owner=owner,
        url=article.url,
        provider=article.provider,
        summarized=summary_text is not None,
        summary_degraded=summary_degraded,
        elapsed_ms=int((time.perf_counter() - started) * 1000),
    )
    return ConversionResult(
        article=article,
        summary=summary_text,
        summary_degraded=summary_degraded,
        article_audio=article_audio,
        summary_audio=summary_audio,
    )
