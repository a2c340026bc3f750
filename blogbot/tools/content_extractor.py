from __future__ import annotations

import re
from dataclasses import dataclass

import trafilatura
from bs4 import BeautifulSoup
from loguru import logger

FALLBACK_SELECTORS = ("article", "main", "#content", ".content", ".post")
MIN_ARTICLE_CHARS = 200


@dataclass
class ExtractedContent:
    title: str
    text: str
    method: str


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip()


def _extract_title(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return _collapse(soup.title.string)
    return ""


def _extract_with_trafilatura(raw_html: str) -> tuple[str, str]:
    try:
        text = trafilatura.extract(raw_html, output_format="txt")
        metadata = trafilatura.extract_metadata(raw_html) if isinstance(text, str) else None
    except Exception as exc:  # lxml raises on some malformed documents
        logger.debug(f"trafilatura failed, using selector fallback: {exc}")
        return "", ""
    if not isinstance(text, str):
        return "", ""
    title = ""
    if metadata is not None and metadata.title:
        title = _collapse(metadata.title)
    return title, _collapse(text)


def _extract_with_selectors(soup: BeautifulSoup) -> str:
    for selector in FALLBACK_SELECTORS:
        node = soup.select_one(selector)
        if node is not None:
            return _collapse(node.get_text(" "))
    body = soup.body or soup
    return _collapse(body.get_text(" "))


def extract_main_content(raw_html: str) -> ExtractedContent:
    """Pull the readable article out of an HTML page.

    Trafilatura runs first; when it yields too little text, the first matching
    container selector wins, and the whole body is the last resort. Whitespace
    in the returned text is collapsed to single spaces.
    """
    soup = BeautifulSoup(raw_html, "html.parser")
    page_title = _extract_title(soup)

    title, text = _extract_with_trafilatura(raw_html)
    if len(text) > MIN_ARTICLE_CHARS:
        return ExtractedContent(title=title or page_title or "Untitled", text=text, method="trafilatura")

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return ExtractedContent(
        title=page_title or "Untitled",
        text=_extract_with_selectors(soup),
        method="selector",
    )
