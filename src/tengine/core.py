"""Runtime configuration and logging for tengine.

Configuration lives in module globals seeded from environment variables and
overridden once at startup through `set_config`. After startup the values are
only read, so executors can share them across requests without locking.
"""

from __future__ import annotations

import contextvars
import os
from pathlib import Path

DEFAULT_TIMEOUT_MS = 120_000

# Configurable globals (overridable via set_config)
PDF_RENDERER_EXE = os.environ.get("TENGINE_PDF_RENDERER_EXE", "tengine-pdf-renderer")
TIMEOUT_MS = int(os.environ.get("TENGINE_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS)))
LOG_JSON = os.environ.get("TENGINE_LOG_JSON", "0") == "1"
LOG_FILE = os.environ.get("TENGINE_LOG_FILE")
_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}
_LOG_LEVEL_NAME = os.environ.get("TENGINE_LOG_LEVEL", "INFO").upper()
LOG_LEVEL = _LEVELS.get(_LOG_LEVEL_NAME, 20)

_LOG_OPTIONS: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tengine_log_options", default=None
)


def set_config(
    *,
    pdf_renderer_exe: str | None = None,
    timeout_ms: int | None = None,
    log_level: str | None = None,
    log_json: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Override runtime configuration values in memory.

    Parameters mirror the TENGINE_* environment variables.
    """
    global PDF_RENDERER_EXE, TIMEOUT_MS, LOG_LEVEL, LOG_JSON, LOG_FILE
    if pdf_renderer_exe is not None:
        PDF_RENDERER_EXE = pdf_renderer_exe
    if timeout_ms is not None:
        TIMEOUT_MS = int(timeout_ms)
    if log_level is not None:
        lvl = _LEVELS.get(str(log_level).upper())
        if lvl is not None:
            LOG_LEVEL = lvl
    if log_json is not None:
        LOG_JSON = bool(log_json)
    if log_file is not None:
        LOG_FILE = log_file


def _maybe_rotate_log_file(path: Path, max_bytes: int = 1_000_000) -> None:
    try:
        if path.exists() and path.stat().st_size > max_bytes:
            backup = path.with_suffix(path.suffix + ".1")
            backup.unlink(missing_ok=True)
            path.replace(backup)
    except OSError:
        pass


def log(msg: str, level: str = "INFO") -> None:
    """Print a single-line message at a given level if above threshold.

    Emits plain text by default; when LOG_JSON is enabled, emits a JSON line and
    mirrors output to LOG_FILE if configured.
    """
    lv = _LEVELS.get(str(level).upper(), 20)
    if lv < LOG_LEVEL:
        return
    out = msg
    if LOG_JSON:
        import json as _json
        from datetime import datetime, timezone

        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "message": msg,
        }
        opts = _LOG_OPTIONS.get()
        if opts is not None:
            record["options"] = opts
        out = _json.dumps(record, ensure_ascii=False)
    print(out, flush=True)
    if LOG_FILE:
        p = Path(LOG_FILE)
        _maybe_rotate_log_file(p)
        try:
            with p.open("a", encoding="utf-8") as fh:
                fh.write(out + "\n")
        except OSError:
            pass


def set_log_options(options: str) -> None:
    """Record the option string of the request being handled, for audit."""
    _LOG_OPTIONS.set(options)
    log(f"[opts ] {options}", level="DEBUG")


def get_log_options() -> str | None:
    return _LOG_OPTIONS.get()
