"""Engine registry and request routing.

Executors are created on first use and then cached for the life of the
process; everything they hold is read-only after construction.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Mapping

from . import core
from .core import log
from .errors import ConfigurationError
from .executors import Executor, PdfRendererCommandExecutor, TikaJavaExecutor
from .tika import TIKA_AUTO

PDF_RENDERER = "pdfrenderer"
TIKA = "tika"

MIMETYPE_PDF = "application/pdf"
MIMETYPE_ILLUSTRATOR = "application/illustrator"
MIMETYPE_PNG = "image/png"

_RENDERER_SOURCES = frozenset({MIMETYPE_PDF, MIMETYPE_ILLUSTRATOR})

_FACTORIES: Mapping[str, Callable[[], Executor]] = MappingProxyType(
    {
        PDF_RENDERER: lambda: PdfRendererCommandExecutor(core.PDF_RENDERER_EXE),
        TIKA: TikaJavaExecutor,
    }
)

_executors: dict[str, Executor] = {}
_lock = threading.Lock()


@dataclass(frozen=True)
class TransformRequest:
    source_file: Path
    target_file: Path
    source_mimetype: str
    target_mimetype: str
    options: Mapping[str, str] = field(default_factory=dict)
    transform_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_file", Path(self.source_file))
        object.__setattr__(self, "target_file", Path(self.target_file))
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))


def engine_names() -> tuple[str, ...]:
    return tuple(_FACTORIES)


def get_executor(engine: str) -> Executor:
    """Return the executor for an engine name, constructing it once."""
    factory = _FACTORIES.get(engine)
    if factory is None:
        raise ConfigurationError(f"unknown engine: {engine}")
    with _lock:
        executor = _executors.get(engine)
        if executor is None:
            executor = factory()
            _executors[engine] = executor
    return executor


def reset() -> None:
    """Forget constructed executors (used after configuration changes)."""
    with _lock:
        _executors.clear()


def select_engine(source_mimetype: str, target_mimetype: str) -> str:
    if source_mimetype in _RENDERER_SOURCES and target_mimetype == MIMETYPE_PNG:
        return PDF_RENDERER
    return TIKA


def transform(request: TransformRequest, engine: str | None = None) -> str:
    """Route a request to its engine and run it; returns the engine name used."""
    name = engine or select_engine(request.source_mimetype, request.target_mimetype)
    executor = get_executor(name)
    transform_name = request.transform_name or (TIKA_AUTO if name == TIKA else name)
    log(
        f"[eng  ] {name} {transform_name} {request.source_mimetype} -> {request.target_mimetype}",
        level="DEBUG",
    )
    executor.transform(
        transform_name,
        request.source_mimetype,
        request.target_mimetype,
        request.options,
        request.source_file,
        request.target_file,
    )
    return name


def _metadata_executor() -> TikaJavaExecutor:
    executor = get_executor(TIKA)
    if not isinstance(executor, TikaJavaExecutor):
        raise ConfigurationError(f"engine {TIKA} does not handle metadata")
    return executor


def extract_metadata(request: TransformRequest) -> None:
    executor = _metadata_executor()
    executor.extract_metadata(
        request.transform_name,
        request.source_mimetype,
        request.target_mimetype,
        request.options,
        request.source_file,
        request.target_file,
    )


def embed_metadata(request: TransformRequest) -> None:
    executor = _metadata_executor()
    executor.embed_metadata(
        request.transform_name,
        request.source_mimetype,
        request.target_mimetype,
        request.options,
        request.source_file,
        request.target_file,
    )


def check_availability(engine: str) -> str:
    """Return the version string reported by an engine's tool."""
    return get_executor(engine).version()
