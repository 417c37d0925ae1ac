"""Heuristic main-content detection for raw article HTML.

The extractor runs an ordered cascade and stops at the first stage that yields
usable markup:

1. document metadata (title, description, author, publish date, site name)
2. structural selectors, tier by tier, longest match per tier
3. noise removal inside the chosen container
4. paragraphs longer than ``MIN_PARAGRAPH_CHARS`` when more than
   ``MIN_PARAGRAPH_COUNT`` qualify
5. prose-looking ``div``/``section`` blocks, longest first
6. description plus the flattened body text

Whatever comes out is passed through ``strip_noise_markup`` and must be at
least ``MIN_CONTENT_CHARS`` long, otherwise ``InsufficientContent`` is raised.
"""

from __future__ import annotations

import html
import os
import re
from typing import Any, Mapping, Optional

import structlog
from bs4 import BeautifulSoup, Tag

from audicle.models.article import ArticleRecord
from audicle.services.exceptions import InsufficientContent
from audicle.utils.text_cleaner import collapse_whitespace, strip_noise_markup

logger = structlog.get_logger(__name__)

MIN_CONTENT_CHARS = int(os.getenv("EXTRACTOR_MIN_CONTENT_CHARS", "100"))
MIN_PARAGRAPH_CHARS = int(os.getenv("EXTRACTOR_MIN_PARAGRAPH_CHARS", "30"))
MIN_PARAGRAPH_COUNT = int(os.getenv("EXTRACTOR_MIN_PARAGRAPH_COUNT", "3"))
MIN_BLOCK_CHARS = int(os.getenv("EXTRACTOR_MIN_BLOCK_CHARS", "100"))
MIN_BLOCK_PERIODS = int(os.getenv("EXTRACTOR_MIN_BLOCK_PERIODS", "3"))
MAX_PROSE_BLOCKS = int(os.getenv("EXTRACTOR_MAX_PROSE_BLOCKS", "5"))

# Article containers first, then generic main regions, then class conventions.
STRUCTURAL_SELECTOR_TIERS: tuple[str, ...] = (
    "article",
    '[role="main"]',
    ".post-content",
    ".article-content",
    ".entry-content",
    "main",
)

NOISE_TAGS = (
    "script",
    "style",
    "noscript",
    "template",
    "iframe",
    "nav",
    "header",
    "footer",
    "aside",
    "form",
)
_NOISE_MARKER = re.compile(
    r"(?:^|[-_\s])(?:ad|ads|advert|advertisement|sponsor|sponsored|promo|"
    r"social|share|sharing|nav|navbar|navigation|menu|breadcrumbs?|"
    r"header|footer|newsletter|related)(?:[-_\s]|$)",
    re.IGNORECASE,
)


def _initialise_soup(markup: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(markup, "lxml")
    except Exception:  # pragma: no cover - lxml missing or choking on input
        return BeautifulSoup(markup, "html.parser")


def _text_length(element: Tag) -> int:
    return len(element.get_text().strip())


def _meta_content(soup: BeautifulSoup, *queries: tuple[str, str]) -> str:
    for attribute, value in queries:
        node = soup.find(
            "meta", attrs={attribute: re.compile(rf"^{re.escape(value)}$", re.I)}
        )
        if node is None:
            continue
        content = (node.get("content") or "").strip()
        if content:
            return content
    return ""


def extract_metadata(soup: BeautifulSoup) -> dict[str, str]:
    title_node = soup.find("title")
    title = collapse_whitespace(title_node.get_text()) if title_node else ""
    return {
        "title": title,
        "description": _meta_content(
            soup, ("name", "description"), ("property", "og:description")
        ),
        "author": _meta_content(soup, ("name", "author"), ("property", "article:author")),
        "publish_date": _meta_content(soup, ("property", "article:published_time")),
        "site_name": _meta_content(soup, ("property", "og:site_name")),
    }


def find_structural_candidate(soup: BeautifulSoup) -> Optional[Tag]:
    """Return the longest element of the first selector tier with any match."""
    for selector in STRUCTURAL_SELECTOR_TIERS:
        matches = soup.select(selector)
        if not matches:
            continue
        # max() keeps the first of equally long matches, i.e. document order.
        best = max(matches, key=_text_length)
        logger.debug(
            event="html_extract.structural_match",
            selector=selector,
            matches=len(matches),
            chars=_text_length(best),
        )
        return best
    return None


def _is_noise(element: Tag) -> bool:
    if element.name in NOISE_TAGS:
        return True
    markers = " ".join(element.get("class") or [])
    element_id = element.get("id") or ""
    return bool(_NOISE_MARKER.search(markers) or _NOISE_MARKER.search(element_id))


def strip_noise_elements(container: Tag) -> Tag:
    for element in container.find_all(_is_noise):
        if element.decomposed:
            continue
        element.decompose()
    return container


def _paragraph_content(body: Tag) -> str:
    paragraphs = [
        paragraph
        for paragraph in body.find_all("p")
        if len(paragraph.get_text().strip()) > MIN_PARAGRAPH_CHARS
    ]
    if len(paragraphs) <= MIN_PARAGRAPH_COUNT:
        return ""
    return "".join(str(paragraph) for paragraph in paragraphs)


def _prose_block_content(body: Tag) -> str:
    blocks = []
    for element in body.find_all(["div", "section"]):
        text = element.get_text()
        if len(text.strip()) > MIN_BLOCK_CHARS and text.count(".") > MIN_BLOCK_PERIODS:
            blocks.append(element)
    if not blocks:
        return ""
    blocks.sort(key=_text_length, reverse=True)
    return "".join(str(block) for block in blocks[:MAX_PROSE_BLOCKS])


def _flattened_body_content(body: Tag, description: str) -> str:
    for element in body.find_all(["script", "style", "noscript", "template"]):
        if not element.decomposed:
            element.decompose()
    body_text = collapse_whitespace(body.get_text(" "))
    combined = collapse_whitespace(f"{description} {body_text}")
    if not combined:
        return ""
    return f"<p>{html.escape(combined, quote=False)}</p>"


def _has_text(markup: str) -> bool:
    return bool(collapse_whitespace(re.sub(r"<[^>]+>", " ", strip_noise_markup(markup))))


def _finalise_content(content: str, description: str, source_url: str) -> str:
    cleaned = strip_noise_markup(content)
    if len(cleaned) < MIN_CONTENT_CHARS and description:
        cleaned = f"<p>{html.escape(description, quote=False)}</p>{cleaned}"
    if len(cleaned) < MIN_CONTENT_CHARS:
        raise InsufficientContent(
            f"Extraction produced insufficient content: {len(cleaned)} chars "
            f"(minimum: {MIN_CONTENT_CHARS})",
            url=source_url,
        )
    return cleaned


def extract(raw_html: str, source_url: str, *, provider: str = "") -> ArticleRecord:
    """Locate the main article body in ``raw_html`` and build an ``ArticleRecord``."""
    if not raw_html or not raw_html.strip():
        raise InsufficientContent("No HTML provided for extraction.", url=source_url)

    soup = _initialise_soup(raw_html)
    metadata = extract_metadata(soup)
    description = metadata["description"]
    body = soup.body or soup

    content = ""
    stage = "none"

    candidate = find_structural_candidate(soup)
    if candidate is not None:
        strip_noise_elements(candidate)
        content = candidate.decode_contents()
        stage = "structural"
        if not _has_text(content):
            content = ""

    if not content:
        content = _paragraph_content(body)
        stage = "paragraphs"

    if not content:
        content = _prose_block_content(body)
        stage = "prose_blocks"

    if not content:
        content = _flattened_body_content(body, description)
        stage = "body_text"

    final_content = _finalise_content(content, description, source_url)

    logger.debug(
        event="html_extract.complete",
        url=source_url,
        stage=stage,
        chars=len(final_content),
    )
    return ArticleRecord(
        title=metadata["title"],
        content=final_content,
        url=source_url,
        site_name=metadata["site_name"],
        publish_date=metadata["publish_date"],
        author=metadata["author"],
        description=description,
        provider=provider,
    )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Mapping):
        # Some metadata services nest values, e.g. {"name": "..."}.
        value = value.get("name") or value.get("title") or value.get("url") or ""
    return str(value).strip()


def _paragraphs_from_text(text: str) -> str:
    blocks = [collapse_whitespace(block) for block in re.split(r"\n\s*\n", text)]
    return "".join(
        f"<p>{html.escape(block, quote=False)}</p>" for block in blocks if block
    )


def record_from_metadata(
    data: Mapping[str, Any], source_url: str, *, provider: str = ""
) -> ArticleRecord:
    """Normalise a structured metadata payload into an ``ArticleRecord``."""
    description = _as_text(data.get("description"))
    raw_content = _as_text(data.get("content"))
    if raw_content and not re.search(r"<[a-zA-Z][^>]*>", raw_content):
        raw_content = _paragraphs_from_text(raw_content)

    content = _finalise_content(raw_content, description, source_url)
    return ArticleRecord(
        title=_as_text(data.get("title")),
        content=content,
        url=source_url,
        site_name=_as_text(data.get("publisher")),
        publish_date=_as_text(data.get("date")),
        author=_as_text(data.get("author")),
        description=description,
        provider=provider,
    )
