"""Helpers to sanitise extracted markup and turn it into narratable text."""

import html
import re
import unicodedata
from typing import Iterable

# Common boilerplate lines that should never be read aloud.
_BOILERPLATE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^advertisement$",
        r"^sponsored content$",
        r"^sign up for our newsletter.*",
        r"^subscribe to .*",
        r"^related (stories|articles).*",
        r"^read (more|next):.*",
        r"^share this (story|article).*",
        r"^follow us on .*",
        r"^comments?$",
    )
)

_CONTROL_CHARS = {
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\ufeff",  # zero-width no-break space / BOM
}

# Closing tags may carry junk (``</script foo>``) or whitespace; an unterminated
# block swallows the rest of the fragment, as a browser would.
_NOISE_BLOCK_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r"<script\b[^>]*>.*?</script\b[^>]*>",
        r"<style\b[^>]*>.*?</style\b[^>]*>",
        r"<script\b[^>]*>.*\Z",
        r"<style\b[^>]*>.*\Z",
        r"</?(?:script|style)\b[^>]*>",
    )
)
_COMMENT_PATTERN = re.compile(r"<!--.*?-->", re.DOTALL)
_OPEN_COMMENT_PATTERN = re.compile(r"<!--.*\Z", re.DOTALL)

_BLOCK_TAG_PATTERN = re.compile(
    r"</?(?:p|div|section|article|h[1-6]|li|ul|ol|blockquote|br|tr|table|pre)\b[^>]*>",
    re.IGNORECASE,
)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def _strip_control_chars(text: str) -> str:
    for char in _CONTROL_CHARS:
        text = text.replace(char, "")
    return text


def _remove_boilerplate(lines: Iterable[str]) -> list[str]:
    cleaned: list[str] = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            cleaned.append("")
            continue
        if any(pattern.match(stripped) for pattern in _BOILERPLATE_PATTERNS):
            continue
        cleaned.append(stripped)
    return cleaned


def strip_noise_markup(markup: str | None) -> str:
    """Remove script/style blocks and HTML comments from a markup fragment.

    Runs to a fixed point, so stripping already-stripped markup is a no-op and
    tags reassembled by a removal (``<scr<script></script>ipt>``) are caught too.
    """
    if not markup:
        return ""

    previous = None
    content = markup
    while content != previous:
        previous = content
        content = _COMMENT_PATTERN.sub("", content)
        content = _OPEN_COMMENT_PATTERN.sub("", content)
        for pattern in _NOISE_BLOCK_PATTERNS:
            content = pattern.sub("", content)
    return content.strip()


def collapse_whitespace(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def clean_text(raw_text: str | None) -> str:
    """Normalise extracted article text and remove obvious boilerplate."""
    if not raw_text:
        return ""

    text = html.unescape(raw_text)
    text = unicodedata.normalize("NFKC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace("\u00a0", " ")
    text = _strip_control_chars(text)
    text = re.sub(r"[\t\f]+", " ", text)
    text = re.sub(r" {2,}", " ", text)

    lines = _remove_boilerplate(text.split("\n"))

    normalised_lines: list[str] = []
    for line in lines:
        if not line:
            if normalised_lines and normalised_lines[-1] == "":
                continue
            normalised_lines.append("")
        else:
            normalised_lines.append(line)

    cleaned_text = "\n".join(normalised_lines).strip()
    # Ensure paragraphs are separated by a single blank line
    cleaned_text = re.sub(r"\n{3,}", "\n\n", cleaned_text)
    return cleaned_text


def html_to_text(markup: str | None) -> str:
    """Flatten an HTML fragment into paragraphs of plain text."""
    if not markup:
        return ""
    content = strip_noise_markup(markup)
    content = _BLOCK_TAG_PATTERN.sub("\n\n", content)
    content = _TAG_PATTERN.sub(" ", content)
    paragraphs = [collapse_whitespace(block) for block in content.split("\n\n")]
    return clean_text("\n\n".join(block for block in paragraphs if block))
