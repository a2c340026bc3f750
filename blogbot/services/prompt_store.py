"""Prompt templates shipped as a JSON catalogue next to the package."""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


@lru_cache(maxsize=1)
def _load_catalog() -> dict[str, Any]:
    catalog = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"{PROMPTS_PATH.name} must hold a JSON object")
    return catalog


def get_prompt(key: str) -> str:
    """Look up a dotted key such as ``analyst.system``."""
    section, _, name = key.rpartition(".")
    node: Any = _load_catalog()
    for part in filter(None, section.split(".")):
        node = node.get(part) if isinstance(node, dict) else None
    text = node.get(name) if isinstance(node, dict) else None
    if text is None:
        raise KeyError(f"Prompt key not found: {key}")
    if not isinstance(text, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return text


def render_prompt(key: str, **values: Any) -> str:
    try:
        return Template(get_prompt(key)).substitute(values)
    except KeyError as exc:
        if key in str(exc):
            raise
        raise KeyError(f"Missing template value {exc.args[0]!r} for prompt {key!r}") from exc
