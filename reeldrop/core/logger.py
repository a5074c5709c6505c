# reeldrop/core/logger.py
from __future__ import annotations

"""
ReelDrop — Logging (Loguru)
---------------------------
Configured once at import from `settings` (`LOG_LEVEL`, `LOG_JSON`, `LOG_FILE`).

Every record carries the `request_id` bound by RequestIDMiddleware ("N/A"
outside a request). Service modules keep using `logging.getLogger(__name__)`;
those records, plus uvicorn's, are routed into Loguru by `InterceptHandler`.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from loguru import logger

from reeldrop.core.config import Settings, settings

INTERCEPTED_LOGGERS = ("uvicorn", "uvicorn.error", "fastapi", "starlette", "reeldrop", "redis")
FILE_ROTATION = "10 MB"


# ─────────────────────────────────────────────────────────────
# 🧾 Formatters
# ─────────────────────────────────────────────────────────────
def _fmt_pretty(record):
    record["extra"].setdefault("request_id", "N/A")
    name = record["name"].replace("<", "[").replace(">", "]")
    return (
        f"<green>{record['time']:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        f"<level>{record['level']:<8}</level> | "
        f"<cyan>{name}</cyan>:<cyan>{record['line']}</cyan> - "
        "<level>{message}</level> | request_id={extra[request_id]}\n{exception}"
    )


def format_json(record) -> str:
    """One JSON object per line; bound extras are merged in."""
    payload: Dict[str, Any] = {
        "time": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f%z"),
        "level": record["level"].name,
        "logger": record["name"],
        "line": record["line"],
        "message": record["message"],
        "request_id": record["extra"].get("request_id", "N/A"),
    }
    for k, v in record["extra"].items():
        if k != "_json":
            payload.setdefault(k, v)
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    record["extra"]["_json"] = json.dumps(payload, ensure_ascii=False, default=str)
    return "{extra[_json]}\n"


# ─────────────────────────────────────────────────────────────
# 🔁 Intercept stdlib logging → Loguru
# ─────────────────────────────────────────────────────────────
class InterceptHandler(logging.Handler):
    """Re-emit a stdlib record through Loguru under its original logger name."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.patch(lambda r: r.update(name=record.name)).opt(
            depth=6, exception=record.exc_info
        ).log(level, record.getMessage())


def configure_logging(cfg: Settings) -> None:
    """(Re)install the Loguru sinks and stdlib interception for `cfg`."""
    level = cfg.LOG_LEVEL.upper()
    fmt = format_json if cfg.LOG_JSON else _fmt_pretty
    debug = cfg.ENV == "development"

    logger.remove()
    logger.add(
        sys.stdout,
        level=level,
        format=fmt,
        enqueue=True,
        backtrace=debug,
        diagnose=debug,
        filter=lambda r: r["name"] != "uvicorn.access",
    )
    # uvicorn formats its own access lines
    logger.add(sys.stdout, format="{message}", level="INFO", filter="uvicorn.access", enqueue=True)

    if cfg.LOG_FILE:
        path = Path(cfg.LOG_FILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(path), rotation=FILE_ROTATION, level=level, format=format_json, enqueue=True)

    for name in INTERCEPTED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.setLevel(level)
        std_logger.propagate = False


configure_logging(settings)
