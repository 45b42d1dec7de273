"""PDF page rasteriser used as the pdfrenderer engine's default executable.

Command line::

    tengine-pdf-renderer [--page=N] [--width=W --height=H]
                         [--allow-enlargement] [--maintain-aspect-ratio]
                         SOURCE TARGET
    tengine-pdf-renderer --version

Exit codes: 0 success, 1 rendering failure, 2 usage error.
"""

from __future__ import annotations

import argparse
import sys

import fitz

from . import __version__


def compute_scale(
    page_width: float,
    page_height: float,
    width: int | None,
    height: int | None,
    *,
    allow_enlargement: bool = False,
    maintain_aspect_ratio: bool = False,
) -> tuple[float, float]:
    """Return the (x, y) zoom factors that fit a page into the requested box."""
    if width is None or height is None or page_width <= 0 or page_height <= 0:
        return 1.0, 1.0
    sx = width / page_width
    sy = height / page_height
    if maintain_aspect_ratio:
        sx = sy = min(sx, sy)
    if not allow_enlargement:
        sx = min(sx, 1.0)
        sy = min(sy, 1.0)
    return sx, sy


def render(
    source: str,
    target: str,
    *,
    page: int = 0,
    width: int | None = None,
    height: int | None = None,
    allow_enlargement: bool = False,
    maintain_aspect_ratio: bool = False,
) -> tuple[int, int]:
    """Render one page of `source` to a PNG at `target`; returns the pixel size."""
    doc = fitz.open(source, filetype="pdf")
    try:
        if page < 0 or page >= len(doc):
            raise ValueError(f"page {page} out of range (document has {len(doc)} pages)")
        pg = doc[page]
        sx, sy = compute_scale(
            pg.rect.width,
            pg.rect.height,
            width,
            height,
            allow_enlargement=allow_enlargement,
            maintain_aspect_ratio=maintain_aspect_ratio,
        )
        pix = pg.get_pixmap(matrix=fitz.Matrix(sx, sy), alpha=False)
        pix.save(target, output="png")
        return pix.width, pix.height
    finally:
        doc.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tengine-pdf-renderer", add_help=True)
    p.add_argument("source", nargs="?", help="Input PDF or AI file")
    p.add_argument("target", nargs="?", help="Output PNG file")
    p.add_argument("--page", type=int, default=0, help="Zero-based page index")
    p.add_argument("--width", type=int, help="Target width in pixels")
    p.add_argument("--height", type=int, help="Target height in pixels")
    p.add_argument("--allow-enlargement", action="store_true", help="Allow scaling up")
    p.add_argument(
        "--maintain-aspect-ratio", action="store_true", help="Keep the page aspect ratio"
    )
    p.add_argument(
        "--version",
        action="version",
        version=f"tengine-pdf-renderer {__version__} (PyMuPDF {fitz.VersionBind})",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    if ns.source is None or ns.target is None:
        parser.print_usage(sys.stderr)
        return 2
    try:
        w, h = render(
            ns.source,
            ns.target,
            page=ns.page,
            width=ns.width,
            height=ns.height,
            allow_enlargement=ns.allow_enlargement,
            maintain_aspect_ratio=ns.maintain_aspect_ratio,
        )
    except Exception as e:
        print(f"tengine-pdf-renderer: {e}", file=sys.stderr)
        return 1
    print(f"{ns.target} {w}x{h}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
