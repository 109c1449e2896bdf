"""Loguru sinks and structured log lines for the research pipeline.

Structured helpers emit one line per call, `TAG: {dict}`, so provider
ladders, LLM usage and stage transitions can be grepped out of the daily file.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from app.config import settings

LOG_DIR = Path(settings.log_dir)
LOG_DIR.mkdir(parents=True, exist_ok=True)

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "trafilatura",
    "asyncio",
)

logger.remove()
logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)
logger.add(
    LOG_DIR / "corroborate_{time:YYYY-MM-DD}.log",
    format=FILE_FORMAT,
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(settings.noisy_log_level.upper())


def _structured(tag: str, payload: dict[str, Any], *, level: str = "INFO") -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    logger.opt(depth=2).log(level, f"{tag}: {payload}")


def log_provider_call(
    capability: str,
    provider: str,
    status: str,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """One rung of a fallback ladder: success, a failure kind, or skipped."""
    payload = {
        "capability": capability,
        "provider": provider,
        "status": status,
        "duration_ms": duration_ms,
    }
    if error:
        _structured("PROVIDER_CALL_FAILED", {**payload, "error": error}, level="WARNING")
    else:
        _structured("PROVIDER_CALL", payload)


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    payload = {
        "model": model,
        "caller": caller,
        "tokens": {"in": input_tokens, "out": output_tokens},
        "duration_ms": duration_ms,
        "status": status,
    }
    if error:
        _structured("LLM_CALL_FAILED", {**payload, "error": error}, level="ERROR")
    else:
        _structured("LLM_CALL", payload)


def log_research_step(job_id: str, stage: str, status: str, data: Optional[dict] = None) -> None:
    _structured("RESEARCH_STEP", {"job_id": job_id, "stage": stage, "status": status, "data": data})


def log_event(event_type: str, message: str, **fields: Any) -> None:
    _structured("EVENT", {"event_type": event_type, "message": message, **fields})
