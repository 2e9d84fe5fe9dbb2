"""Logger setup with JSON and text formatters plus run-scoped context."""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_ROOT_LOGGER = "compliance_agent"

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar("run_id", default=None)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar("stage", default=None)


def set_run_context(run_id: str | None) -> None:
    """Bind the current task's log records to a run."""
    _run_id.set(run_id)


def set_stage_context(stage: str | None) -> None:
    _stage.set(stage)


def current_context() -> dict[str, Any]:
    context = {"run_id": _run_id.get(), "stage": _stage.get()}
    return {key: value for key, value in context.items() if value is not None}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with the active run context attached."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = current_context()
        if context:
            entry["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S"),
            f"[{record.levelname:8s}]",
            record.name,
        ]
        context = current_context()
        if "run_id" in context:
            parts.append(f"[run={context['run_id']}]")
        if "stage" in context:
            parts.append(f"({context['stage']})")
        parts.append(f"- {record.getMessage()}")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[1] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", log_format: str = "text") -> None:
    """Configure the package logger; safe to call more than once."""
    root_logger = logging.getLogger(_ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers.clear()

    formatter: logging.Formatter = JsonFormatter() if log_format == "json" else TextFormatter()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
