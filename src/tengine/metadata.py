"""Format-specific metadata extractors and the registries that name them.

Extractors read a bounded set of raw fields from a source file. The raw names
are translated to repository property names through a per-extractor mapping
and written to the target file as JSON.
"""

from __future__ import annotations

import codecs
import json
import mimetypes
import re
import zipfile
from datetime import datetime, timedelta, timezone
from email import policy
from email.parser import BytesParser
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping
from xml.etree import ElementTree as ET

import fitz
import mutagen
import olefile
from mutagen.id3 import ID3, ID3NoHeaderError

from .errors import ExtractorNotFoundError, ToolFailure, ValidationError
from .options import METADATA

_DC = "{http://purl.org/dc/elements/1.1/}"
_DCTERMS = "{http://purl.org/dc/terms/}"
_CP = "{http://schemas.openxmlformats.org/package/2006/metadata/core-properties}"
_ODF_META = "{urn:oasis:names:tc:opendocument:xmlns:meta:1.0}"
_ODF_OFFICE = "{urn:oasis:names:tc:opendocument:xmlns:office:1.0}"

_PDF_DATE = re.compile(
    r"^(?:D:)?(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?(Z|[+-]\d{2}(?:'?\d{2}'?)?)?"
)

MIMETYPE_PDF = "application/pdf"
MIMETYPE_RFC822 = "message/rfc822"
OOXML_MIMETYPES = frozenset(
    {
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    }
)
ODF_MIMETYPES = frozenset(
    {
        "application/vnd.oasis.opendocument.text",
        "application/vnd.oasis.opendocument.spreadsheet",
        "application/vnd.oasis.opendocument.presentation",
    }
)
OLE2_MIMETYPES = frozenset(
    {
        "application/msword",
        "application/vnd.ms-excel",
        "application/vnd.ms-powerpoint",
        "application/vnd.visio",
    }
)
MIMETYPE_MP3 = "audio/mpeg"

# Raw field names shared by the document extractors
TITLE = "title"
AUTHOR = "author"
SUBJECT = "subject"
CREATED = "created"
PAGE_COUNT = "pageCount"

_DOCUMENT_MAPPING = {
    TITLE: ("cm:title",),
    AUTHOR: ("cm:author",),
    SUBJECT: ("cm:description",),
    CREATED: ("cm:created",),
}

_AUDIO_MAPPING = {
    TITLE: ("cm:title",),
    "artist": ("audio:artist", "cm:author"),
    "album": ("audio:album",),
    "genre": ("audio:genre",),
    "trackNumber": ("audio:trackNumber",),
    "composer": ("audio:composer",),
    "releaseDate": ("audio:releaseDate",),
    "description": ("cm:description",),
    "duration": ("audio:duration",),
    "sampleRate": ("audio:sampleRate",),
    "channels": ("audio:channelType",),
}


class MetadataKind(str, Enum):
    PDF_BOX = "PdfBoxMetadataExtractor"
    POI = "PoiMetadataExtractor"
    OFFICE = "OfficeMetadataExtractor"
    OPEN_DOCUMENT = "OpenDocumentMetadataExtractor"
    MAIL = "MailMetadataExtractor"
    MP3 = "MP3MetadataExtractor"
    TIKA_AUDIO = "TikaAudioMetadataExtractor"
    TIKA_AUTO = "TikaAutoMetadataExtractor"


def parse_pdf_date(value: str | None) -> datetime | None:
    """Parse a PDF date string such as ``D:20240102030405+01'00'``."""
    if not value:
        return None
    m = _PDF_DATE.match(value.strip())
    if not m:
        return None
    defaults = (0, 1, 1, 0, 0, 0)
    year, month, day, hour, minute, second = (
        int(g) if g else d for g, d in zip(m.groups()[:6], defaults)
    )
    tzinfo = None
    tz = m.group(7)
    if tz == "Z":
        tzinfo = timezone.utc
    elif tz:
        sign = 1 if tz[0] == "+" else -1
        digits = tz[1:].replace("'", "")
        offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:4] or 0))
        tzinfo = timezone(sign * offset)
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=tzinfo)
    except ValueError:
        return None


def format_pdf_date(value: datetime) -> str:
    out = value.strftime("D:%Y%m%d%H%M%S")
    offset = value.utcoffset()
    if offset is None:
        return out
    minutes = int(offset.total_seconds() // 60)
    sign = "+" if minutes >= 0 else "-"
    hh, mm = divmod(abs(minutes), 60)
    return f"{out}{sign}{hh:02d}'{mm:02d}'"


def _iso_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    return value


class AbstractMetadataExtractor:
    """Common capability of every extractor: extract, map and write, embed."""

    kind: MetadataKind
    mapping: Mapping[str, tuple[str, ...]] = MappingProxyType({})

    def extract_metadata(
        self, source_mimetype: str, options: Mapping[str, str], source_file: Path
    ) -> dict[str, Any]:
        raise NotImplementedError

    def map_metadata(self, metadata: Mapping[str, Any]) -> dict[str, Any]:
        mapped: dict[str, Any] = {}
        for raw, value in metadata.items():
            value = _serialize(value)
            if value in (None, "", []):
                continue
            for prop in self.mapping.get(raw, ()):
                mapped.setdefault(prop, value)
        return mapped

    def map_metadata_and_write(self, target_file: Path, metadata: Mapping[str, Any]) -> None:
        mapped = self.map_metadata(metadata)
        Path(target_file).write_text(
            json.dumps(mapped, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )

    def embed_metadata(
        self,
        source_mimetype: str,
        target_mimetype: str,
        options: Mapping[str, str],
        source_file: Path,
        target_file: Path,
    ) -> None:
        raise ToolFailure(f"{self.kind.value} does not support embedding metadata")

    def properties_to_raw(self, options: Mapping[str, str]) -> dict[str, Any]:
        """Decode the JSON `metadata` option and reverse the property mapping."""
        raw_json = options.get(METADATA)
        if not raw_json:
            raise ValidationError("The metadata option is required to embed metadata")
        try:
            properties = json.loads(raw_json)
        except json.JSONDecodeError as e:
            raise ValidationError(f"The metadata option is not valid JSON: {e}") from e
        if not isinstance(properties, dict):
            raise ValidationError("The metadata option must be a JSON object")
        raw: dict[str, Any] = {}
        for key, props in self.mapping.items():
            for prop in props:
                if prop in properties:
                    raw[key] = properties[prop]
                    break
        return raw


class PdfBoxMetadataExtractor(AbstractMetadataExtractor):
    kind = MetadataKind.PDF_BOX
    mapping = MappingProxyType({**_DOCUMENT_MAPPING, PAGE_COUNT: ("cm:pageCount",)})

    _EDITABLE = ("author", "producer", "creator", "title", "creationDate", "modDate",
                 "subject", "keywords")

    def _open(self, source_file: Path):
        try:
            return fitz.open(str(source_file))
        except Exception as e:
            raise ToolFailure(f"Unable to read PDF {Path(source_file).name}: {e}") from e

    def extract_metadata(self, source_mimetype, options, source_file):
        doc = self._open(source_file)
        try:
            md = doc.metadata or {}
            page_count = doc.page_count
        finally:
            doc.close()
        return {
            TITLE: md.get("title"),
            AUTHOR: md.get("author"),
            SUBJECT: md.get("subject"),
            CREATED: parse_pdf_date(md.get("creationDate")),
            PAGE_COUNT: page_count,
        }

    def embed_metadata(self, source_mimetype, target_mimetype, options, source_file, target_file):
        raw = self.properties_to_raw(options)
        doc = self._open(source_file)
        try:
            md = {k: v for k, v in (doc.metadata or {}).items() if k in self._EDITABLE and v}
            for key in (TITLE, AUTHOR, SUBJECT):
                if key in raw:
                    md[key] = str(raw[key])
            if CREATED in raw:
                created = _iso_date(str(raw[CREATED]))
                if created is None:
                    raise ValidationError(f"Invalid cm:created date: {raw[CREATED]!r}")
                md["creationDate"] = format_pdf_date(created)
            doc.set_metadata(md)
            doc.save(str(target_file))
        finally:
            doc.close()


class PoiMetadataExtractor(AbstractMetadataExtractor):
    """Office Open XML packages (docx, xlsx, pptx)."""

    kind = MetadataKind.POI
    mapping = MappingProxyType(dict(_DOCUMENT_MAPPING))

    def extract_metadata(self, source_mimetype, options, source_file):
        root = _read_package_xml(source_file, "docProps/core.xml")
        if root is None:
            return {}
        return {
            TITLE: root.findtext(f"{_DC}title"),
            AUTHOR: root.findtext(f"{_DC}creator"),
            SUBJECT: root.findtext(f"{_DC}subject") or root.findtext(f"{_DC}description"),
            CREATED: _iso_date(root.findtext(f"{_DCTERMS}created")),
            "lastModifiedBy": root.findtext(f"{_CP}lastModifiedBy"),
        }


class OpenDocumentMetadataExtractor(AbstractMetadataExtractor):
    kind = MetadataKind.OPEN_DOCUMENT
    mapping = MappingProxyType({**_DOCUMENT_MAPPING, "generator": ("cm:generator",)})

    def extract_metadata(self, source_mimetype, options, source_file):
        root = _read_package_xml(source_file, "meta.xml")
        if root is None:
            return {}
        meta = root.find(f"{_ODF_OFFICE}meta")
        if meta is None:
            return {}
        return {
            TITLE: meta.findtext(f"{_DC}title"),
            AUTHOR: meta.findtext(f"{_ODF_META}initial-creator") or meta.findtext(f"{_DC}creator"),
            SUBJECT: meta.findtext(f"{_DC}description") or meta.findtext(f"{_DC}subject"),
            CREATED: _iso_date(meta.findtext(f"{_ODF_META}creation-date")),
            "generator": meta.findtext(f"{_ODF_META}generator"),
        }


class MailMetadataExtractor(AbstractMetadataExtractor):
    """RFC 822 messages."""

    kind = MetadataKind.MAIL
    mapping = MappingProxyType(
        {
            "messageFrom": ("imap:messageFrom",),
            "messageTo": ("imap:messageTo",),
            "messageCc": ("imap:messageCc",),
            "messageSubject": ("imap:messageSubject", "cm:title", "cm:description"),
            "messageSent": ("imap:dateSent",),
            "messageId": ("imap:messageId",),
        }
    )

    def extract_metadata(self, source_mimetype, options, source_file):
        try:
            with open(source_file, "rb") as fh:
                msg = BytesParser(policy=policy.default).parse(fh, headersonly=True)
        except OSError as e:
            raise ToolFailure(f"Unable to read message {Path(source_file).name}: {e}") from e
        date = msg["Date"]
        return {
            "messageFrom": str(msg["From"]) if msg["From"] else None,
            "messageTo": _addresses(msg["To"]),
            "messageCc": _addresses(msg["Cc"]),
            "messageSubject": str(msg["Subject"]) if msg["Subject"] else None,
            "messageSent": getattr(date, "datetime", None) if date else None,
            "messageId": str(msg["Message-ID"]) if msg["Message-ID"] else None,
        }


class OfficeMetadataExtractor(AbstractMetadataExtractor):
    """Legacy OLE2 documents (doc, xls, ppt) via their SummaryInformation stream."""

    kind = MetadataKind.OFFICE
    mapping = MappingProxyType({**_DOCUMENT_MAPPING, PAGE_COUNT: ("cm:pageCount",)})

    def extract_metadata(self, source_mimetype, options, source_file):
        name = Path(source_file).name
        if not olefile.isOleFile(str(source_file)):
            raise ToolFailure(f"{name} is not an OLE2 document")
        try:
            ole = olefile.OleFileIO(str(source_file))
        except OSError as e:
            raise ToolFailure(f"Unable to read OLE2 document {name}: {e}") from e
        try:
            meta = ole.get_metadata()
        finally:
            ole.close()
        codec = _ole_codec(meta.codepage)
        return {
            TITLE: _ole_text(meta.title, codec),
            AUTHOR: _ole_text(meta.author, codec),
            SUBJECT: _ole_text(meta.subject, codec) or _ole_text(meta.comments, codec),
            CREATED: meta.create_time,
            PAGE_COUNT: meta.num_pages,
        }


class MP3MetadataExtractor(AbstractMetadataExtractor):
    """ID3 tags of MP3 files."""

    kind = MetadataKind.MP3
    mapping = MappingProxyType(dict(_AUDIO_MAPPING))

    _FRAMES = {
        TITLE: "TIT2",
        "artist": "TPE1",
        "album": "TALB",
        "genre": "TCON",
        "trackNumber": "TRCK",
        "composer": "TCOM",
        "releaseDate": "TDRC",
    }

    def extract_metadata(self, source_mimetype, options, source_file):
        try:
            tags = ID3(str(source_file))
        except ID3NoHeaderError:
            return {}
        except mutagen.MutagenError as e:
            raise ToolFailure(f"Unable to read ID3 tags from {Path(source_file).name}: {e}") from e
        raw: dict[str, Any] = {}
        for key, frame_id in self._FRAMES.items():
            frame = tags.get(frame_id)
            raw[key] = str(frame.text[0]) if frame is not None and frame.text else None
        comments = tags.getall("COMM")
        raw["description"] = str(comments[0].text[0]) if comments and comments[0].text else None
        return raw


class TikaAudioMetadataExtractor(AbstractMetadataExtractor):
    """Any audio container mutagen recognises: tags plus stream facts."""

    kind = MetadataKind.TIKA_AUDIO
    mapping = MappingProxyType(dict(_AUDIO_MAPPING))

    _TAGS = {
        TITLE: "title",
        "artist": "artist",
        "album": "album",
        "genre": "genre",
        "trackNumber": "tracknumber",
        "composer": "composer",
        "releaseDate": "date",
        "description": "comment",
    }

    def extract_metadata(self, source_mimetype, options, source_file):
        name = Path(source_file).name
        try:
            audio = mutagen.File(str(source_file), easy=True)
        except mutagen.MutagenError as e:
            raise ToolFailure(f"Unable to read audio file {name}: {e}") from e
        if audio is None:
            raise ToolFailure(f"Unrecognised audio format: {name}")
        tags = audio.tags
        raw: dict[str, Any] = {}
        for key, tag in self._TAGS.items():
            value = tags.get(tag) if tags is not None else None
            if isinstance(value, list):
                value = str(value[0]) if value else None
            raw[key] = value
        info = audio.info
        length = getattr(info, "length", None)
        raw["duration"] = round(length, 3) if length else None
        raw["sampleRate"] = getattr(info, "sample_rate", None)
        raw["channels"] = getattr(info, "channels", None)
        return raw


class TikaAutoMetadataExtractor(AbstractMetadataExtractor):
    """Chooses a format extractor from the source mimetype."""

    kind = MetadataKind.TIKA_AUTO
    mapping = MappingProxyType(
        {
            **_DOCUMENT_MAPPING,
            **MailMetadataExtractor.mapping,
            **_AUDIO_MAPPING,
            PAGE_COUNT: ("cm:pageCount",),
            "mimetype": ("cm:content.mimetype",),
            "size": ("cm:content.size",),
        }
    )

    def __init__(self) -> None:
        self._pdf = PdfBoxMetadataExtractor()
        self._ooxml = PoiMetadataExtractor()
        self._odf = OpenDocumentMetadataExtractor()
        self._mail = MailMetadataExtractor()
        self._office = OfficeMetadataExtractor()
        self._mp3 = MP3MetadataExtractor()
        self._audio = TikaAudioMetadataExtractor()

    def _delegate(self, mimetype: str) -> AbstractMetadataExtractor | None:
        if mimetype == MIMETYPE_PDF:
            return self._pdf
        if mimetype in OOXML_MIMETYPES:
            return self._ooxml
        if mimetype in OLE2_MIMETYPES:
            return self._office
        if mimetype in ODF_MIMETYPES:
            return self._odf
        if mimetype == MIMETYPE_RFC822:
            return self._mail
        if mimetype == MIMETYPE_MP3:
            return self._mp3
        if mimetype.startswith("audio/"):
            return self._audio
        return None

    def extract_metadata(self, source_mimetype, options, source_file):
        mimetype = source_mimetype or mimetypes.guess_type(str(source_file))[0] or ""
        delegate = self._delegate(mimetype)
        if delegate is not None:
            return delegate.extract_metadata(mimetype, options, source_file)
        return {"mimetype": mimetype or None, "size": Path(source_file).stat().st_size}


def _addresses(header: Any) -> list[str]:
    if not header:
        return []
    return [str(a) for a in getattr(header, "addresses", ())]


def _ole_codec(codepage: int | None) -> str:
    if codepage:
        try:
            return codecs.lookup(f"cp{codepage}").name
        except LookupError:
            pass
    return "cp1252"


def _ole_text(value: Any, codec: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode(codec, errors="replace")
    return str(value).rstrip("\x00") or None


def _read_package_xml(source_file: Path, member: str) -> ET.Element | None:
    try:
        with zipfile.ZipFile(source_file) as zf:
            if member not in zf.namelist():
                return None
            return ET.fromstring(zf.read(member))
    except (zipfile.BadZipFile, ET.ParseError, OSError) as e:
        raise ToolFailure(f"Unable to read {member} from {Path(source_file).name}: {e}") from e


def build_extractors() -> Mapping[MetadataKind, AbstractMetadataExtractor]:
    extractors: list[AbstractMetadataExtractor] = [
        PdfBoxMetadataExtractor(),
        PoiMetadataExtractor(),
        OfficeMetadataExtractor(),
        OpenDocumentMetadataExtractor(),
        MailMetadataExtractor(),
        MP3MetadataExtractor(),
        TikaAudioMetadataExtractor(),
        TikaAutoMetadataExtractor(),
    ]
    return MappingProxyType({e.kind: e for e in extractors})


def build_embedders() -> Mapping[MetadataKind, AbstractMetadataExtractor]:
    # Embedding is legacy; only PDF documents support it.
    return MappingProxyType({MetadataKind.PDF_BOX: PdfBoxMetadataExtractor()})


def resolve(
    registry: Mapping[MetadataKind, AbstractMetadataExtractor], transform_name: str, what: str
) -> AbstractMetadataExtractor:
    try:
        kind = MetadataKind(transform_name)
    except ValueError as e:
        raise ExtractorNotFoundError(f"No metadata {what} found for {transform_name!r}") from e
    handler = registry.get(kind)
    if handler is None:
        raise ExtractorNotFoundError(f"No metadata {what} found for {transform_name!r}")
    return handler
