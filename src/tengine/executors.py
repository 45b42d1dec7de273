"""Executors: the per-engine glue between request options and the underlying tool.

`PdfRendererCommandExecutor` runs the renderer as a separate process;
`TikaJavaExecutor` runs text extraction inside this process.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Sequence

from . import metadata
from .core import log, set_log_options
from .errors import ConfigurationError, ToolFailure, TransformError, UnavailableError
from .options import (
    ALLOW_PDF_ENLARGEMENT,
    HEIGHT_REQUEST_PARAM,
    INCLUDE_CONTENTS,
    MAINTAIN_PDF_ASPECT_RATIO,
    NOT_EXTRACT_BOOKMARK_TEXT,
    PAGE_REQUEST_PARAM,
    TARGET_ENCODING,
    TIMEOUT,
    WIDTH_REQUEST_PARAM,
    PdfRendererOptionsBuilder,
    parse_bool,
    string_to_long,
)
from .runtime_exec import OPTIONS, SOURCE, TARGET, CommandTemplate, RuntimeExec
from .tika import Tika
from . import tika as tika_args


class Executor(ABC):
    """Common transform entry point of every engine."""

    transformer_id: str
    LICENCE: str = ""

    @abstractmethod
    def transform(
        self,
        transform_name: str,
        source_mimetype: str,
        target_mimetype: str,
        options: Mapping[str, str],
        source_file: Path,
        target_file: Path,
    ) -> None: ...

    @abstractmethod
    def version(self) -> str: ...


class AbstractCommandExecutor(Executor):
    """Runs a transform command and a version-check command as child processes."""

    def __init__(self) -> None:
        self.transform_command = self.create_transform_command()
        self.check_command = self.create_check_command()

    @abstractmethod
    def create_transform_command(self) -> RuntimeExec: ...

    @abstractmethod
    def create_check_command(self) -> RuntimeExec: ...

    def run(
        self,
        options: Sequence[str],
        source_file: Path,
        target_file: Path,
        timeout_ms: int | None = None,
        key: str = ".*",
    ) -> None:
        """Run the transform command; the target only changes when the tool succeeds."""
        source_file = Path(source_file).absolute()
        target_file = Path(target_file).absolute()
        set_log_options(" ".join(options))
        try:
            staging = tempfile.TemporaryDirectory(prefix=".tengine-", dir=target_file.parent)
        except OSError as e:
            raise ToolFailure(f"Cannot write to {target_file.parent}: {e}") from e
        with staging as td:
            staged = Path(td) / target_file.name
            properties = {OPTIONS: list(options), SOURCE: str(source_file), TARGET: str(staged)}
            result = self.transform_command.execute(properties, key=key, timeout_ms=timeout_ms)
            if not result.success:
                raise ToolFailure(
                    f"Transformer exit code was not 0: \n{result.diagnostics}",
                    diagnostics=result.diagnostics,
                )
            if not staged.exists():
                log(
                    f"[WARN ] {self.transformer_id} exited {result.exit_code} without output",
                    level="WARNING",
                )
                return
            os.replace(staged, target_file)
        log(f"[OK   ] {self.transformer_id} {source_file.name} -> {target_file}")

    def version(self) -> str:
        result = self.check_command.execute()
        if not result.success or result.exit_code != 0:
            raise UnavailableError(
                f"Transformer version check exit code was not 0: \n{result.diagnostics}"
            )
        version = result.stdout.strip()
        if not version:
            raise UnavailableError("Transformer version check failed to create any output")
        return version


def _resolve_exe(exe: str) -> str:
    p = Path(exe)
    if p.is_file():
        return str(p.absolute())
    found = shutil.which(exe)
    if found:
        return found
    raise ConfigurationError(f"Executable not found: {exe}")


class PdfRendererCommandExecutor(AbstractCommandExecutor):
    """Renders a PDF or AI page to PNG through an external renderer process."""

    transformer_id = "pdfrenderer"
    LICENCE = (
        "This transformer uses a PDF renderer built on PDFium or PyMuPDF. "
        "See https://pdfium.googlesource.com/pdfium/+/main/LICENSE and "
        "https://github.com/pymupdf/PyMuPDF/blob/main/COPYING"
    )

    def __init__(self, exe: str | None) -> None:
        if not exe:
            raise ConfigurationError(
                "PdfRendererCommandExecutor EXE variable cannot be null or empty"
            )
        self.exe = _resolve_exe(exe)
        super().__init__()

    def create_transform_command(self) -> RuntimeExec:
        return RuntimeExec(
            commands=[
                CommandTemplate(".*", (self.exe, "SPLIT:${options}", "${source}", "${target}"))
            ],
            default_properties={"key": None},
            error_codes=frozenset({1}),
        )

    def create_check_command(self) -> RuntimeExec:
        return RuntimeExec(commands=[CommandTemplate(".*", (self.exe, "--version"))])

    def transform(
        self, transform_name, source_mimetype, target_mimetype, options, source_file, target_file
    ) -> None:
        args = (
            PdfRendererOptionsBuilder.builder()
            .with_page(options.get(PAGE_REQUEST_PARAM))
            .with_width(options.get(WIDTH_REQUEST_PARAM))
            .with_height(options.get(HEIGHT_REQUEST_PARAM))
            .with_allow_pdf_enlargement(options.get(ALLOW_PDF_ENLARGEMENT))
            .with_maintain_pdf_aspect_ratio(options.get(MAINTAIN_PDF_ASPECT_RATIO))
            .build()
        )
        timeout = string_to_long(options.get(TIMEOUT))
        self.run(args, source_file, target_file, timeout, key=f"{source_mimetype};{target_mimetype}")


class TikaJavaExecutor(Executor):
    """Runs text extraction and metadata extraction in this process.

    There is no timeout on this path: a library call that hangs blocks the
    calling thread.
    """

    transformer_id = "tika"
    LICENCE = (
        "This transformer uses PyMuPDF for PDF content. "
        "See https://github.com/pymupdf/PyMuPDF/blob/main/COPYING"
    )

    def __init__(self) -> None:
        self.tika = Tika()
        self.metadata_extractors = metadata.build_extractors()
        self.metadata_embedders = metadata.build_embedders()

    def version(self) -> str:
        import fitz

        return f"tika (PyMuPDF {fitz.VersionBind})"

    def transform(
        self, transform_name, source_mimetype, target_mimetype, options, source_file, target_file
    ) -> None:
        include_contents = parse_bool(options.get(INCLUDE_CONTENTS, "false"))
        not_extract_bookmarks_text = parse_bool(options.get(NOT_EXTRACT_BOOKMARK_TEXT, "false"))
        target_encoding = options.get(TARGET_ENCODING) or "UTF-8"
        self.call(
            source_file,
            target_file,
            transform_name,
            tika_args.INCLUDE_CONTENTS if include_contents else None,
            tika_args.NOT_EXTRACT_BOOKMARKS_TEXT if not_extract_bookmarks_text else None,
            tika_args.SOURCE_MIMETYPE + source_mimetype if source_mimetype else None,
            tika_args.TARGET_MIMETYPE + target_mimetype,
            tika_args.TARGET_ENCODING + target_encoding,
        )

    def call(self, source_file: Path, target_file: Path, *args: str | None) -> None:
        method_args = self._build_args(source_file, target_file, args)
        try:
            self.tika.transform(method_args)
        except TransformError:
            raise
        except Exception as e:
            raise ToolFailure(str(e) or type(e).__name__, diagnostics=repr(e)) from e
        log(f"[OK   ] tika {Path(source_file).name} -> {target_file}")

    @staticmethod
    def _build_args(
        source_file: Path | None, target_file: Path | None, args: Sequence[str | None]
    ) -> list[str]:
        method_args: list[str] = []
        audit: list[str] = []
        for arg in args:
            if arg is not None:
                audit.append(arg)
                method_args.append(arg)
        for f in (source_file, target_file):
            if f is not None:
                path = str(Path(f).absolute())
                ext = Path(path).suffix
                audit.append(ext[1:] if ext else "???")
                method_args.append(path)
        set_log_options(" ".join(audit))
        return method_args

    def extract_metadata(
        self, transform_name, source_mimetype, target_mimetype, options, source_file, target_file
    ) -> None:
        extractor = metadata.resolve(self.metadata_extractors, transform_name, "extractor")
        try:
            raw = extractor.extract_metadata(source_mimetype, options, Path(source_file))
            extractor.map_metadata_and_write(Path(target_file), raw)
        except TransformError:
            raise
        except Exception as e:
            raise ToolFailure(str(e) or type(e).__name__, diagnostics=repr(e)) from e
        log(f"[OK   ] {transform_name} {Path(source_file).name} -> {target_file}")

    def embed_metadata(
        self, transform_name, source_mimetype, target_mimetype, options, source_file, target_file
    ) -> None:
        """Legacy, best-effort: only PDF documents have an embedder."""
        embedder = metadata.resolve(self.metadata_embedders, transform_name, "embedder")
        try:
            embedder.embed_metadata(
                source_mimetype, target_mimetype, options, Path(source_file), Path(target_file)
            )
        except TransformError:
            raise
        except Exception as e:
            raise ToolFailure(str(e) or type(e).__name__, diagnostics=repr(e)) from e
