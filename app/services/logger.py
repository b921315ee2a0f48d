"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# Stdlib loggers of the HTTP, LLM and browser libraries the pipeline drives.
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "playwright",
    "asyncio",
)


def configure_logging(log_dir: Optional[str] = None) -> Path:
    """(Re)install the console and daily file sinks; returns the log directory."""
    directory = Path(log_dir or settings.log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=settings.app_log_level.upper(),
        colorize=True,
    )
    logger.add(
        directory / "artexplorer_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention=f"{max(settings.log_retention_days, 1)} days",
        compression="zip",
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())
    return directory


LOG_DIR = configure_logging()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log a text-completion call."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_pipeline_step(
    session_id: str,
    stage: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log a pipeline stage transition or per-item outcome."""
    step_data = {
        "timestamp": _now(),
        "session_id": session_id,
        "stage": stage,
        "status": status,
        "data": data,
    }
    if status in ("failed", "degraded"):
        logger.warning(f"PIPELINE_STEP: {step_data}")
    else:
        logger.info(f"PIPELINE_STEP: {step_data}")


def log_cache_operation(
    operation: str,
    key: str,
    status: str,
    error: Optional[str] = None,
) -> None:
    """Log a result cache read or write."""
    op_data = {
        "timestamp": _now(),
        "operation": operation,
        "key": key,
        "status": status,
        "error": error,
    }
    if error:
        logger.error(f"CACHE_OPERATION_FAILED: {op_data}")
    else:
        logger.debug(f"CACHE_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
