"""OpenAI-compatible chat completion client used by the optional LLM paths."""
from __future__ import annotations

import json
import time
from typing import Any

from openai import APIError, AsyncOpenAI

from blogbot.config import settings
from blogbot.errors import ExternalServiceError, LLMNotConfiguredError
from blogbot.services.logger import log_llm_call


def extract_json_object(raw_text: str) -> dict[str, Any]:
    """Parse the first JSON object in a reply, tolerating ``` fences."""
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


class LLMClient:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str | None = None,
        client: Any | None = None,
    ):
        self.api_key = settings.openai_api_key if api_key is None else api_key
        self.base_url = base_url or settings.openai_base_url
        self.default_model = default_model or settings.default_model
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise LLMNotConfiguredError()
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=settings.llm_timeout_seconds,
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str | None = None,
        temperature: float = 0.2,
        caller: str = "llm",
    ) -> str:
        """Run one chat completion and return the assistant text."""
        client = self._get_client()
        model_id = model or self.default_model
        started = time.monotonic()
        try:
            response = await client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=temperature,
            )
        except APIError as exc:
            log_llm_call(
                model=model_id,
                caller=caller,
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=str(exc),
            )
            raise ExternalServiceError("openai", str(exc), {"model": model_id}) from exc

        usage = getattr(response, "usage", None)
        log_llm_call(
            model=model_id,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not isinstance(content, str) or not content.strip():
            raise ExternalServiceError("openai", "returned no content", {"model": model_id})
        return content
