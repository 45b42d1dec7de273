"""Argparse-based command-line interface for tengine.

Invoked via the console script `tengine` or as a module with
`python -m tengine`. Failures map to exit codes:
0 ok, 1 tool failure, 2 configuration/validation, 3 timeout,
4 metadata handler not found, 5 engine unavailable, 10 crash.
"""

from __future__ import annotations

import argparse
import mimetypes
import time
from pathlib import Path

from . import __version__, engines
from .core import get_log_options, log, set_config
from .errors import TransformError
from .options import string_to_int

_EXTRA_TYPES = {
    ".ai": "application/illustrator",
    ".eml": "message/rfc822",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".odt": "application/vnd.oasis.opendocument.text",
    ".ods": "application/vnd.oasis.opendocument.spreadsheet",
    ".odp": "application/vnd.oasis.opendocument.presentation",
    ".json": "application/json",
}


def guess_mimetype(path: str | Path) -> str:
    suffix = Path(path).suffix.lower()
    if suffix in _EXTRA_TYPES:
        return _EXTRA_TYPES[suffix]
    return mimetypes.guess_type(str(path))[0] or "application/octet-stream"


def _add_request_args(p: argparse.ArgumentParser, *, name_required: bool) -> None:
    p.add_argument("source", help="Source file")
    p.add_argument("target", help="Target file (overwritten on success)")
    p.add_argument("-s", "--source-mimetype", help="Source mimetype (guessed from extension)")
    p.add_argument("-T", "--target-mimetype", help="Target mimetype (guessed from extension)")
    p.add_argument(
        "-n",
        "--transform-name",
        required=name_required,
        default="",
        help="Transform or metadata extractor name",
    )
    p.add_argument(
        "-o",
        "--option",
        action="append",
        metavar="KEY=VALUE",
        help="Transform option; can be repeated (e.g. -o page=0 -o width=100)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Create and return the CLI argument parser."""
    p = argparse.ArgumentParser(prog="tengine", add_help=True)
    p.add_argument(
        "-C",
        "--config",
        dest="config",
        help="Path to a config file (.toml/.yaml/.yml/.json)",
    )
    p.add_argument("-V", "--version", action="version", version=f"tengine {__version__}")
    p.add_argument("-x", "--pdf-renderer-exe", dest="pdf_renderer_exe", help="PDF renderer executable")
    p.add_argument("-t", "--timeout-ms", type=int, dest="timeout_ms", help="Default subprocess timeout (ms)")
    p.add_argument(
        "-L",
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Standard logging level threshold",
    )
    p.add_argument("-q", "--quiet", action="store_true", help="Set log level to ERROR (overridden by --log-level)")
    p.add_argument("-v", "--verbose", action="store_true", help="Set log level to DEBUG (overridden by --log-level)")
    p.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (ts, level, message)")
    p.add_argument("--log-file", help="Append logs to a file (1MB simple rotation)")

    sub = p.add_subparsers(dest="command", metavar="COMMAND")
    t = sub.add_parser("transform", help="Transform SOURCE into TARGET")
    _add_request_args(t, name_required=False)
    t.add_argument("-e", "--engine", choices=list(engines.engine_names()), help="Force an engine")
    c = sub.add_parser("check", help="Report the version of each engine's tool")
    c.add_argument("engine", nargs="*", help="Engines to check (default: all)")
    x = sub.add_parser("extract-metadata", help="Extract SOURCE metadata as JSON into TARGET")
    _add_request_args(x, name_required=True)
    m = sub.add_parser("embed-metadata", help="Write metadata (-o metadata=JSON) into a copy of SOURCE")
    _add_request_args(m, name_required=True)
    sub.add_parser("engines", help="List engine names")
    return p


def _parse_options(items: list[str] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in items or []:
        if "=" not in item:
            log(f"[WARN ] ignoring invalid --option entry: {item}", level="WARNING")
            continue
        k, v = item.split("=", 1)
        out[k.strip()] = v
    return out


def _request(ns: argparse.Namespace) -> engines.TransformRequest:
    return engines.TransformRequest(
        source_file=Path(ns.source),
        target_file=Path(ns.target),
        source_mimetype=ns.source_mimetype or guess_mimetype(ns.source),
        target_mimetype=ns.target_mimetype or guess_mimetype(ns.target),
        options=_parse_options(ns.option),
        transform_name=ns.transform_name or "",
    )


def _run(ns: argparse.Namespace) -> int:
    if ns.command == "engines":
        for name in engines.engine_names():
            print(name)
        return 0
    if ns.command == "check":
        names = ns.engine or list(engines.engine_names())
        exit_code = 0
        for name in names:
            try:
                print(f"{name}: {engines.check_availability(name)}")
            except TransformError as e:
                log(f"[ERROR] {name}: {e.message}", level="ERROR")
                if exit_code == 0:
                    exit_code = e.exit_code
        return exit_code

    req = _request(ns)
    if not req.source_file.exists():
        log(f"[ERROR] input not found: {req.source_file}", level="ERROR")
        return 1
    t0 = time.perf_counter()
    if ns.command == "transform":
        used = engines.transform(req, ns.engine)
    elif ns.command == "extract-metadata":
        engines.extract_metadata(req)
        used = engines.TIKA
    else:
        engines.embed_metadata(req)
        used = engines.TIKA
    log(
        f"[DONE ] engine={used} {req.source_file.name} -> {req.target_file} "
        f"options=[{get_log_options() or ''}] elapsed={time.perf_counter() - t0:.2f}s"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns a conventional exit code."""
    parser = build_parser()
    ns = parser.parse_args(argv if argv is not None else None)
    if ns.command is None:
        parser.print_usage()
        return 2

    cfg: dict[str, object] = {}
    if ns.config:
        from .config import load_config_file, unknown_keys

        try:
            cfg = load_config_file(ns.config)
            if cfg.get("timeout_ms") is not None:
                cfg["timeout_ms"] = string_to_int(str(cfg["timeout_ms"]), "timeout_ms")
        except Exception as e:
            log(f"[ERROR] config load failed: {e!r}", level="ERROR")
            return 2
        for key in unknown_keys(cfg):
            log(f"[WARN ] unknown config key: {key}", level="WARNING")

    log_level = ns.log_level
    if log_level is None and ns.quiet:
        log_level = "ERROR"
    if log_level is None and ns.verbose:
        log_level = "DEBUG"
    if log_level is None and cfg.get("log_level"):
        log_level = str(cfg.get("log_level")).upper()

    # CLI flags override config file values
    set_config(
        pdf_renderer_exe=(
            ns.pdf_renderer_exe
            if ns.pdf_renderer_exe
            else str(cfg.get("pdf_renderer_exe"))
            if cfg.get("pdf_renderer_exe")
            else None
        ),
        timeout_ms=(
            ns.timeout_ms
            if ns.timeout_ms is not None
            else cfg.get("timeout_ms")  # type: ignore[arg-type]
            if cfg.get("timeout_ms") is not None
            else None
        ),
        log_level=log_level,
        log_json=(True if ns.log_json else bool(cfg.get("log_json")) if cfg.get("log_json") is not None else None),
        log_file=(ns.log_file if ns.log_file else str(cfg.get("log_file")) if cfg.get("log_file") else None),
    )
    engines.reset()

    try:
        return _run(ns)
    except TransformError as e:
        log(f"[ERROR] {type(e).__name__}: {e.message}", level="ERROR")
        return e.exit_code
    except Exception as e:  # pragma: no cover - safety
        log(f"[CRASH] {e!r}", level="ERROR")
        return 10


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
