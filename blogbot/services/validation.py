from __future__ import annotations

import re
from typing import Any, Iterable
from urllib.parse import urlparse

from blogbot.errors import InputValidationError

SLUG_PATTERN = re.compile(r"^[a-zA-Z0-9\-_]+$")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def sanitize_text(value: str) -> str:
    """Strip angle brackets and control characters from user text."""
    value = value.replace("<", "").replace(">", "")
    return _CONTROL_CHARS.sub("", value).strip()


def sanitize_url(url: str) -> str:
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputValidationError("Invalid URL format", fields=[f"url: {url!r}"])
    return parsed.geturl()


def is_valid_slug(slug: str) -> bool:
    return 0 < len(slug) <= 200 and bool(SLUG_PATTERN.match(slug))


def require_slug(slug: str) -> str:
    if not is_valid_slug(slug):
        raise InputValidationError("Invalid slug", fields=["slug: contains invalid characters"])
    return slug


def format_field_errors(errors: Iterable[dict[str, Any]]) -> list[str]:
    """Flatten pydantic error dicts into ``"field: message"`` strings."""
    formatted: list[str] = []
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "request"
        formatted.append(f"{field}: {err.get('msg', 'invalid value')}")
    return formatted
