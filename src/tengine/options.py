"""Request parameter names and the option builders that turn them into tool arguments."""

from __future__ import annotations

from .core import log
from .errors import ValidationError

# Request parameter names, as sent by clients of the transform contract.
PAGE_REQUEST_PARAM = "page"
WIDTH_REQUEST_PARAM = "width"
HEIGHT_REQUEST_PARAM = "height"
ALLOW_PDF_ENLARGEMENT = "allowPdfEnlargement"
MAINTAIN_PDF_ASPECT_RATIO = "maintainPdfAspectRatio"
TIMEOUT = "timeout"
INCLUDE_CONTENTS = "includeContents"
NOT_EXTRACT_BOOKMARK_TEXT = "notExtractBookmarksText"
TARGET_ENCODING = "targetEncoding"
METADATA = "metadata"


def parse_bool(value: str | None) -> bool:
    """True only for a case-insensitive "true"; anything else, including None, is False."""
    return value is not None and value.strip().lower() == "true"


def string_to_int(value: str | None, name: str = "value") -> int | None:
    """Parse an integer request parameter, raising ValidationError on junk."""
    if value is None or not str(value).strip():
        return None
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Request parameter {name} has an invalid value: {value!r}") from e


def string_to_long(value: str | None, name: str = TIMEOUT) -> int | None:
    return string_to_int(value, name)


def _optional_int(value: str | None, name: str) -> int | None:
    # Best effort: an unusable optional number is dropped, not rejected.
    if value is None or not str(value).strip():
        return None
    try:
        n = int(str(value).strip())
    except ValueError:
        log(f"[WARN ] ignoring non-integer {name}={value!r}", level="WARNING")
        return None
    if n < 0:
        log(f"[WARN ] ignoring negative {name}={n}", level="WARNING")
        return None
    return n


class PdfRendererOptionsBuilder:
    """Fluent builder for the command-line flags of the PDF renderer.

    Tokens are always emitted in the order the renderer documents:
    page, width, height, allow-enlargement, maintain-aspect-ratio.
    """

    def __init__(self) -> None:
        self._page: int | None = None
        self._width: int | None = None
        self._height: int | None = None
        self._allow_enlargement = False
        self._maintain_aspect_ratio = False

    @classmethod
    def builder(cls) -> "PdfRendererOptionsBuilder":
        return cls()

    def with_page(self, page: str | None) -> "PdfRendererOptionsBuilder":
        self._page = _optional_int(page, PAGE_REQUEST_PARAM)
        return self

    def with_width(self, width: str | None) -> "PdfRendererOptionsBuilder":
        self._width = _optional_int(width, WIDTH_REQUEST_PARAM)
        return self

    def with_height(self, height: str | None) -> "PdfRendererOptionsBuilder":
        self._height = _optional_int(height, HEIGHT_REQUEST_PARAM)
        return self

    def with_allow_pdf_enlargement(self, flag: str | None) -> "PdfRendererOptionsBuilder":
        self._allow_enlargement = parse_bool(flag)
        return self

    def with_maintain_pdf_aspect_ratio(self, flag: str | None) -> "PdfRendererOptionsBuilder":
        self._maintain_aspect_ratio = parse_bool(flag)
        return self

    def build(self) -> tuple[str, ...]:
        args: list[str] = []
        if self._page is not None:
            args.append(f"--page={self._page}")
        has_dimensions = self._width is not None and self._height is not None
        if has_dimensions:
            args.append(f"--width={self._width}")
            args.append(f"--height={self._height}")
        if self._allow_enlargement:
            args.append("--allow-enlargement")
        if self._maintain_aspect_ratio:
            if has_dimensions:
                args.append("--maintain-aspect-ratio")
            else:
                log(
                    "[WARN ] maintainPdfAspectRatio ignored without width and height",
                    level="WARNING",
                )
        return tuple(args)
