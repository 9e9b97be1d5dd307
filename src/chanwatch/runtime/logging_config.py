"""Centralized logging configuration for chanwatch.

Provides:
- Structured JSON formatter for production / machine parsing
- Human-readable formatter for development, with optional ANSI colour
- Cycle / channel context via contextvars, set by the orchestrator
- Structured probe fields (channel_id, model, outcome, status_code) passed
  through ``extra=`` and rendered by whichever formatter is installed
- Rotating file handler for log persistence
- Third-party logger noise control
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

# ── Probe context propagated through the cycle ────────────────────────────
ctx_cycle_id: ContextVar[str] = ContextVar("ctx_cycle_id", default="")
ctx_channel_id: ContextVar[str] = ContextVar("ctx_channel_id", default="")

# Structured fields the core attaches with ``extra=``
EVENT_FIELDS: tuple[str, ...] = (
    "channel_id",
    "model",
    "outcome",
    "status_code",
    "source",
    "count",
)

_ANSI_RESET = "\033[0m"
_ANSI_COLOURS: dict[str, str] = {
    "ok": "\033[32m",
    "failed": "\033[31m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[31m",
    "WARNING": "\033[33m",
}


class ContextFilter(logging.Filter):
    """Inject cycle / channel context vars into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.cycle_id = ctx_cycle_id.get("")  # type: ignore[attr-defined]
        if not hasattr(record, "channel_id"):
            record.channel_id = ctx_channel_id.get("")  # type: ignore[attr-defined]
        return True


def _event_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for attr in EVENT_FIELDS:
        val = getattr(record, attr, None)
        if val is not None and val != "":
            fields[attr] = val
    return fields


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        cycle = getattr(record, "cycle_id", "")
        if cycle:
            entry["cycle_id"] = cycle
        entry.update(_event_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable formatter with optional context suffix and colour.

    Colour follows the record's ``outcome`` field when present, otherwise
    its level; INFO records without an outcome stay uncoloured.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        *,
        color: bool = False,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        ctx_parts: list[str] = []
        cycle = getattr(record, "cycle_id", "")
        if cycle:
            ctx_parts.append(f"cycle={cycle[:8]}")
        chan = getattr(record, "channel_id", "")
        if chan not in ("", None):
            ctx_parts.append(f"ch={chan}")

        base = super().format(record)
        if ctx_parts:
            base = f"{base} [{' '.join(ctx_parts)}]"

        if self.color:
            key = getattr(record, "outcome", None) or record.levelname
            colour = _ANSI_COLOURS.get(key)
            if colour:
                return f"{colour}{base}{_ANSI_RESET}"
        return base


# Third-party loggers to quiet down
_NOISY_LOGGERS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_dir: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    module_levels: dict[str, str] | None = None,
    color: bool | None = None,
) -> None:
    """Configure logging for the whole chanwatch process.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR).
        json_output: Use JSON formatter for console; else human-readable.
        log_dir: Directory for rotating log files. None = stderr only.
        max_bytes: Max bytes per log file before rotation.
        backup_count: Number of rotated backup files to keep.
        module_levels: Per-logger level overrides, e.g. {"chanwatch.runtime.prober": "DEBUG"}.
        color: Colour human-readable output. None = only when stderr is a TTY.
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    ctx_filter = ContextFilter()

    # ── Console handler ──
    if json_output:
        formatter: logging.Formatter = JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        if color is None:
            color = sys.stderr.isatty()
        formatter = HumanFormatter(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
            color=color,
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    # ── Rotating file handler (always JSON for machine parsing) ──
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "chanwatch.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        file_handler.addFilter(ctx_filter)
        root.addHandler(file_handler)

    # ── Third-party noise control ──
    for logger_name, logger_level in _NOISY_LOGGERS.items():
        logging.getLogger(logger_name).setLevel(logger_level)

    # ── Per-module overrides ──
    if module_levels:
        for mod, mod_level in module_levels.items():
            logging.getLogger(mod).setLevel(
                getattr(logging, mod_level.upper(), numeric_level)
            )


def configure_from_config(config: dict, *, verbose: bool = False) -> None:
    """Configure logging from config.toml runtime settings.

    Args:
        config: Settings dict with optional 'runtime' section containing
                log_level, log_json, log_dir, module_levels.
        verbose: CLI --verbose flag overrides config level to DEBUG.
    """
    runtime = config.get("runtime", {})

    level = "DEBUG" if verbose else runtime.get("log_level", "INFO")
    json_output = runtime.get("log_json", False)
    log_dir = runtime.get("log_dir", None)
    module_levels = runtime.get("module_levels", None)

    configure_logging(
        level=level,
        json_output=json_output,
        log_dir=log_dir,
        module_levels=module_levels,
    )
