"""loguru setup and the structured log lines the pipeline emits.

Every helper writes one line ``TAG: {payload}``.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from vooli.config import settings

LOG_DIR = Path("logs")
NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "httpx",
    "httpcore",
    "openai._base_client",
    "sse_starlette.sse",
    "asyncio",
)


def _configure() -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.app_log_level.upper(),
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss.SSS}</green> <level>{level: <7}</level> "
            "<cyan>{name}:{line}</cyan> {message}"
        ),
    )
    if settings.log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        logger.add(
            LOG_DIR / "vooli_{time:YYYY-MM-DD}.log",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} {level: <7} {name}:{function}:{line} {message}",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


_configure()


def _emit(level: str, tag: str, **fields: Any) -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}
    logger.log(level, f"{tag}: {payload}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """One completion request, with token usage and latency."""
    _emit(
        "ERROR" if error else "INFO",
        "LLM_CALL_FAILED" if error else "LLM_CALL",
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        duration_ms=duration_ms,
        status=status,
        error=error,
    )


def log_run_stage(
    run_id: str,
    stage: str,
    status: str,
    data: Optional[dict[str, Any]] = None,
) -> None:
    _emit(
        "WARNING" if status == "failed" else "INFO",
        "RUN_STAGE",
        run_id=run_id,
        stage=stage,
        status=status,
        data=data,
    )


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    _emit(
        "ERROR" if error else "DEBUG",
        "DB_OPERATION_FAILED" if error else "DB_OPERATION",
        operation=operation,
        table=table,
        status=status,
        details=details,
        error=error,
    )


def log_event(event_type: str, message: str, **kwargs) -> None:
    _emit("INFO", "EVENT", event_type=event_type, message=message, **kwargs)
