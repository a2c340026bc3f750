"""Loguru sinks plus helpers that emit one machine-readable record per line."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from blogbot.config import settings

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
    "redis",
    "trafilatura",
    "asyncio",
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)
logger.add(
    LOG_DIR / "blogbot_{time:YYYY-MM-DD}.log",
    format=FILE_FORMAT,
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(settings.noisy_log_level.upper())


def _record(tag: str, fields: dict[str, Any], failed: bool = False) -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    if failed:
        logger.error(f"{tag}_FAILED: {payload}")
    else:
        logger.info(f"{tag}: {payload}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Token usage and latency of one chat completion."""
    _record(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=bool(error),
    )


def log_stage(stage: str, status: str, **fields: Any) -> None:
    """Pipeline stage transition (started / completed / error)."""
    _record("PIPELINE_STAGE", {"stage": stage, "status": status, **fields}, failed=status == "error")


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    _record(
        "DB_OPERATION",
        {"operation": operation, "table": table, "status": status, "details": details, "error": error},
        failed=bool(error),
    )


def log_event(event_type: str, message: str, **kwargs: Any) -> None:
    _record("EVENT", {"event_type": event_type, "message": message, **kwargs})
