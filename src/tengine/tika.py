"""In-process text extraction library used by the tika engine.

`Tika.transform` takes a single argument list, the same shape the engine would
pass to a command-line extractor::

    [transform_name, "--includeContents", "--notExtractBookmarksText",
     "--sourceMimetype=application/pdf", "--targetMimetype=text/plain",
     "--targetEncoding=UTF-8", source, target]

The auto transform picks a parser (PDF, OOXML packages, other zip archives,
plain text) from the source mimetype, then the file extension, then the
content. Rendering supports plain text, HTML, XHTML and XML targets.
"""

from __future__ import annotations

import codecs
import html
import io
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Sequence
from xml.etree import ElementTree as ET

import fitz

from .errors import ValidationError

ARCHIVE = "Archive"
OOXML = "OOXML"
PDF_BOX = "PdfBox"
TEXT_PLAIN = "TextPlain"
TIKA_AUTO = "TikaAuto"

INCLUDE_CONTENTS = "--includeContents"
NOT_EXTRACT_BOOKMARKS_TEXT = "--notExtractBookmarksText"
SOURCE_MIMETYPE = "--sourceMimetype="
TARGET_MIMETYPE = "--targetMimetype="
TARGET_ENCODING = "--targetEncoding="

MIMETYPE_TEXT_PLAIN = "text/plain"
MIMETYPE_HTML = "text/html"
MIMETYPE_XHTML = "application/xhtml+xml"
MIMETYPE_XML = "text/xml"

# Source hints for the auto transform, checked before content detection
_BY_MIMETYPE = {
    "application/pdf": PDF_BOX,
    "application/illustrator": PDF_BOX,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": OOXML,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": OOXML,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": OOXML,
    "application/zip": ARCHIVE,
    "application/x-zip-compressed": ARCHIVE,
    "application/java-archive": ARCHIVE,
}
_BY_EXTENSION = {
    ".pdf": PDF_BOX,
    ".ai": PDF_BOX,
    ".docx": OOXML,
    ".xlsx": OOXML,
    ".pptx": OOXML,
    ".zip": ARCHIVE,
    ".jar": ARCHIVE,
    ".txt": TEXT_PLAIN,
    ".csv": TEXT_PLAIN,
    ".log": TEXT_PLAIN,
    ".md": TEXT_PLAIN,
}

_W_NS = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_A_NS = "{http://schemas.openxmlformats.org/drawingml/2006/main}"
_SS_NS = "{http://schemas.openxmlformats.org/spreadsheetml/2006/main}"
_DC_TITLE = "{http://purl.org/dc/elements/1.1/}title"
_SLIDE_NAME = re.compile(r"ppt/slides/slide(\d+)\.xml$")


class TikaException(Exception):
    pass


@dataclass
class ParsedContent:
    title: str | None = None
    paragraphs: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Request:
    transform_name: str
    source: Path
    target: Path
    target_mimetype: str
    target_encoding: str
    include_contents: bool
    extract_bookmarks: bool
    source_mimetype: str = ""


def _parse_args(args: Sequence[str]) -> _Request:
    transform_name = source = target = None
    source_mimetype = ""
    target_mimetype = MIMETYPE_TEXT_PLAIN
    target_encoding = "UTF-8"
    include_contents = False
    extract_bookmarks = True
    for arg in args:
        if arg.startswith("--"):
            if arg == INCLUDE_CONTENTS:
                include_contents = True
            elif arg == NOT_EXTRACT_BOOKMARKS_TEXT:
                extract_bookmarks = False
            elif arg.startswith(SOURCE_MIMETYPE):
                source_mimetype = arg[len(SOURCE_MIMETYPE) :]
            elif arg.startswith(TARGET_MIMETYPE):
                target_mimetype = arg[len(TARGET_MIMETYPE) :]
            elif arg.startswith(TARGET_ENCODING):
                target_encoding = arg[len(TARGET_ENCODING) :]
            else:
                raise ValueError(f"Unexpected argument {arg}")
        elif transform_name is None:
            transform_name = arg
        elif source is None:
            source = arg
        elif target is None:
            target = arg
        else:
            raise ValueError(f"Unexpected argument {arg}")
    if transform_name is None or source is None or target is None:
        raise ValueError("Expected a transform name, a source file and a target file")
    return _Request(
        transform_name=transform_name,
        source=Path(source),
        target=Path(target),
        target_mimetype=target_mimetype,
        target_encoding=target_encoding,
        include_contents=include_contents,
        extract_bookmarks=extract_bookmarks,
        source_mimetype=source_mimetype,
    )


def _check_encoding(name: str) -> str:
    try:
        return codecs.lookup(name).name
    except LookupError as e:
        raise ValidationError(f"Unsupported targetEncoding: {name}") from e


def detect(data: bytes, name: str = "") -> str:
    """Best-effort content detection returning one of the transform names."""
    if data.startswith(b"%PDF"):
        return PDF_BOX
    if data.startswith(b"PK\x03\x04"):
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                if "[Content_Types].xml" in zf.namelist():
                    return OOXML
        except zipfile.BadZipFile:
            pass
        return ARCHIVE
    if b"\x00" not in data[:8192]:
        return TEXT_PLAIN
    raise TikaException(f"Unsupported content type for {name or 'document'}")


def choose_parser(data: bytes, mimetype: str = "", name: str = "") -> str:
    """Pick a transform name from the declared mimetype, then the file extension, then the content."""
    base = mimetype.split(";", 1)[0].strip().lower()
    if base in _BY_MIMETYPE:
        return _BY_MIMETYPE[base]
    if base.startswith("text/"):
        return TEXT_PLAIN
    kind = _BY_EXTENSION.get(Path(name).suffix.lower())
    if kind is not None:
        return kind
    return detect(data, name)


class Tika:
    """Parses a document and writes its text in the requested markup."""

    def __init__(self) -> None:
        parsers: dict[str, Callable[[bytes, _Request], ParsedContent]] = {
            ARCHIVE: self._parse_archive,
            OOXML: self._parse_ooxml,
            PDF_BOX: self._parse_pdf,
            TEXT_PLAIN: self._parse_text,
            TIKA_AUTO: self._parse_auto,
        }
        self._parsers = MappingProxyType(parsers)
        self._writers = MappingProxyType(
            {
                MIMETYPE_TEXT_PLAIN: _render_text,
                MIMETYPE_HTML: _render_html,
                MIMETYPE_XHTML: _render_xhtml,
                MIMETYPE_XML: _render_xhtml,
            }
        )

    @property
    def transform_names(self) -> tuple[str, ...]:
        return tuple(self._parsers)

    def transform(self, args: Sequence[str]) -> None:
        req = _parse_args(args)
        parser = self._parsers.get(req.transform_name)
        if parser is None:
            raise TikaException(f"Unknown transform name {req.transform_name}")
        writer = self._writers.get(req.target_mimetype)
        if writer is None:
            raise TikaException(f"Unsupported target mimetype {req.target_mimetype}")
        encoding = _check_encoding(req.target_encoding)
        content = parser(req.source.read_bytes(), req)
        rendered = writer(content, req.target_encoding)
        errors = "replace" if writer is _render_text else "xmlcharrefreplace"
        req.target.write_bytes(rendered.encode(encoding, errors=errors))

    def _parse_auto(self, data: bytes, req: _Request) -> ParsedContent:
        return self._parsers[choose_parser(data, req.source_mimetype, req.source.name)](data, req)

    def _parse_pdf(self, data: bytes, req: _Request) -> ParsedContent:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except Exception as e:
            raise TikaException(f"Unable to read PDF: {e}") from e
        try:
            if doc.page_count == 0:
                raise TikaException("PDF has no pages")
            content = ParsedContent(title=(doc.metadata or {}).get("title") or None)
            for page in doc:
                text = page.get_text("text")
                content.paragraphs.extend(_split_paragraphs(text))
            if req.extract_bookmarks:
                for _level, title, _page in doc.get_toc():
                    if title.strip():
                        content.paragraphs.append(title.strip())
        finally:
            doc.close()
        return content

    def _parse_text(self, data: bytes, req: _Request) -> ParsedContent:
        if data.startswith(codecs.BOM_UTF8):
            text = data[len(codecs.BOM_UTF8) :].decode("utf-8", errors="replace")
        else:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError:
                text = data.decode("latin-1")
        return ParsedContent(paragraphs=[line.rstrip() for line in text.splitlines()])

    def _parse_archive(self, data: bytes, req: _Request) -> ParsedContent:
        content = ParsedContent()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                for info in zf.infolist():
                    if info.is_dir():
                        continue
                    content.paragraphs.append(info.filename)
                    if not req.include_contents:
                        continue
                    entry = zf.read(info)
                    try:
                        kind = detect(entry, info.filename)
                    except TikaException:
                        continue
                    embedded = self._parsers[kind](entry, req)
                    content.paragraphs.extend(embedded.paragraphs)
        except zipfile.BadZipFile as e:
            raise TikaException(f"Unable to read archive: {e}") from e
        return content

    def _parse_ooxml(self, data: bytes, req: _Request) -> ParsedContent:
        content = ParsedContent()
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zf:
                names = zf.namelist()
                if "docProps/core.xml" in names:
                    title = ET.fromstring(zf.read("docProps/core.xml")).findtext(_DC_TITLE)
                    content.title = title or None
                if "word/document.xml" in names:
                    root = ET.fromstring(zf.read("word/document.xml"))
                    content.paragraphs.extend(_runs(root, f"{_W_NS}p", f"{_W_NS}t"))
                slides: list[tuple[int, str]] = []
                for name in names:
                    m = _SLIDE_NAME.match(name)
                    if m:
                        slides.append((int(m.group(1)), name))
                for _num, name in sorted(slides):
                    root = ET.fromstring(zf.read(name))
                    content.paragraphs.extend(_runs(root, f"{_A_NS}p", f"{_A_NS}t"))
                if "xl/sharedStrings.xml" in names:
                    root = ET.fromstring(zf.read("xl/sharedStrings.xml"))
                    content.paragraphs.extend(_runs(root, f"{_SS_NS}si", f"{_SS_NS}t"))
        except (zipfile.BadZipFile, ET.ParseError) as e:
            raise TikaException(f"Unable to read OOXML package: {e}") from e
        return content


def _runs(root: ET.Element, block_tag: str, text_tag: str) -> list[str]:
    out: list[str] = []
    for block in root.iter(block_tag):
        text = "".join(t.text or "" for t in block.iter(text_tag)).strip()
        if text:
            out.append(text)
    return out


def _split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


def _render_text(content: ParsedContent, encoding: str) -> str:
    if not content.paragraphs:
        return ""
    return "\n".join(content.paragraphs) + "\n"


def _render_body(content: ParsedContent, encoding: str) -> str:
    title = html.escape(content.title or "")
    parts = [
        "<head>",
        f'<meta http-equiv="Content-Type" content="text/html; charset={encoding}"/>',
        f"<title>{title}</title>",
        "</head>",
        "<body>",
    ]
    parts += [f"<p>{html.escape(p)}</p>" for p in content.paragraphs]
    parts += ["</body>"]
    return "\n".join(parts)


def _render_html(content: ParsedContent, encoding: str) -> str:
    return "<html>\n" + _render_body(content, encoding) + "\n</html>\n"


def _render_xhtml(content: ParsedContent, encoding: str) -> str:
    return (
        f'<?xml version="1.0" encoding="{encoding}"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml">\n'
        + _render_body(content, encoding)
        + "\n</html>\n"
    )
