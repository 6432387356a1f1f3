"""
Logging for the cascade engine, correlated by run and cascade.

Engine code logs with plain ``logger.info(...)``. The runner and the
cascade executor put their identifiers in a ContextVar, and both
formatters read it back, so every line emitted during a run carries the
cascade, run, node and trace it belongs to:

    CascadeExecutor  → cascade_id
    PromptRunner     → run_id, node_id, trace_id
    everything below → inherits the above through asyncio task context

JSON output is meant for log shipping, the colored output for terminals.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI = re.compile(r"\x1b\[[0-9;]*m")

# Record attributes copied into JSON entries when passed via ``extra=``
_EXTRA_FIELDS = ("event", "latency_ms", "tokens_used", "node_id", "model", "created_count")

# (context key, label, slice) for the human-readable prefix
_PREFIX_FIELDS = (
    ("cascade_id", "cascade", slice(0, 8)),
    ("run_id", "run", slice(-8, None)),
    ("node_id", "node", slice(0, 8)),
)

_LEVEL_COLORS = {
    logging.DEBUG: "\x1b[36m",
    logging.INFO: "\x1b[32m",
    logging.WARNING: "\x1b[33m",
    logging.ERROR: "\x1b[31m",
    logging.CRITICAL: "\x1b[35m",
}
_RESET = "\x1b[0m"

_CHATTY_LOGGERS = ("LiteLLM", "httpcore", "httpx", "openai")


def strip_ansi_codes(text: str) -> str:
    return _ANSI.sub("", text)


def _clean(value: Any) -> Any:
    return strip_ansi_codes(value) if isinstance(value, str) else value


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: message, level, trace context and known extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **(trace_context.get() or {}),
        }
        entry.update(
            (name, _clean(getattr(record, name)))
            for name in _EXTRA_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``[LEVEL] [cascade:… | run:… | node:…] message [event]`` with a colored level."""

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        tags = [
            f"{label}:{context[key][cut]}"
            for key, label, cut in _PREFIX_FIELDS
            if context.get(key)
        ]
        prefix = f"[{' | '.join(tags)}] " if tags else ""

        color = _LEVEL_COLORS.get(record.levelno, "")
        line = f"{color}[{record.levelname:<8}]{_RESET} {prefix}{record.getMessage()}"

        event = getattr(record, "event", None)
        if event is not None:
            line += f" [{event}]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _resolve_format(format: str) -> str:
    if format != "auto":
        return format
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "development").lower() == "production" else "human"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single root handler for the engine's logs.

    Args:
        level: Log level name, case-insensitive
        format: "json", "human", or "auto" (JSON when LOG_FORMAT=json or
            ENV=production)
    """
    format = _resolve_format(format)

    handler = logging.StreamHandler()
    if format == "json":
        handler.setFormatter(StructuredFormatter())
        _quiet_third_party()
    else:
        handler.setFormatter(HumanReadableFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


def _quiet_third_party() -> None:
    """Send LiteLLM and its HTTP stack through the root handler without colors."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    litellm.suppress_debug_info = True

    for name in _CHATTY_LOGGERS:
        chatty = logging.getLogger(name)
        chatty.handlers.clear()
        chatty.propagate = True


def set_trace_context(**kwargs: Any) -> None:
    """Merge fields into the trace context of the current task."""
    trace_context.set({**(trace_context.get() or {}), **kwargs})


def get_trace_context() -> dict:
    return dict(trace_context.get() or {})


def clear_trace_context() -> None:
    trace_context.set(None)
