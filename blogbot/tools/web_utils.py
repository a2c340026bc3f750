from __future__ import annotations

import re
from urllib.parse import urlparse

from slugify import slugify

_QUERY_OR_FRAGMENT = re.compile(r"[#?].*$")


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def normalize_url(url: str) -> str:
    """Drop the query string and fragment so variants of one page dedupe."""
    return _QUERY_OR_FRAGMENT.sub("", url.strip())


def clean_content(text: str, max_length: int = 15000) -> str:
    """Collapse whitespace and hard-truncate to ``max_length`` characters."""
    text = re.sub(r"\s+", " ", text).strip()
    return text[:max_length]


def extract_domain(url: str) -> str:
    """Extract domain from URL for display."""
    try:
        host = urlparse(url).netloc
    except ValueError:
        return url
    return host[4:] if host.startswith("www.") else host


def make_slug(text: str, max_length: int = 120) -> str:
    """Lowercase, hyphen-separated ASCII slug."""
    return slugify(text, max_length=max_length, word_boundary=True) or "post"
