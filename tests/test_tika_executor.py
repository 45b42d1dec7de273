import zipfile
from pathlib import Path

import pytest

from tengine.core import get_log_options
from tengine.errors import ToolFailure, ValidationError
from tengine.executors import TikaJavaExecutor
from tengine.tika import ARCHIVE, OOXML, PDF_BOX, TEXT_PLAIN, Tika, choose_parser, detect

TXT = "text/plain"


def make_text_pdf(path: Path, text: str = "Hello", *, bookmark: str | None = None) -> None:
    import fitz  # type: ignore

    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), text, fontsize=12)
    if bookmark:
        doc.set_toc([[1, bookmark, 1]])
    doc.set_metadata({"title": "Quick Title"})
    doc.save(path)
    doc.close()


def make_docx(path: Path, paragraphs: list[str]) -> None:
    w = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
    body = "".join(f"<w:p><w:r><w:t>{p}</w:t></w:r></w:p>" for p in paragraphs)
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("[Content_Types].xml", "<Types/>")
        zf.writestr("word/document.xml", f'<w:document xmlns:w="{w}"><w:body>{body}</w:body></w:document>')


def test_pdf_to_text(tmp_path: Path) -> None:
    src = tmp_path / "quick.pdf"
    make_text_pdf(src, "The quick brown fox", bookmark="Chapter One")
    out = tmp_path / "quick.txt"
    TikaJavaExecutor().transform(PDF_BOX, "application/pdf", TXT, {}, src, out)
    text = out.read_text(encoding="utf-8")
    assert "The quick brown fox" in text
    assert "Chapter One" in text


def test_bookmarks_can_be_skipped(tmp_path: Path) -> None:
    src = tmp_path / "quick.pdf"
    make_text_pdf(src, "Body text", bookmark="Chapter One")
    out = tmp_path / "quick.txt"
    opts = {"notExtractBookmarksText": "true"}
    TikaJavaExecutor().transform(PDF_BOX, "application/pdf", TXT, opts, src, out)
    text = out.read_text(encoding="utf-8")
    assert "Body text" in text
    assert "Chapter One" not in text


def test_audit_options_string(tmp_path: Path) -> None:
    src = tmp_path / "quick.pdf"
    make_text_pdf(src)
    TikaJavaExecutor().transform(
        PDF_BOX, "application/pdf", TXT, {"includeContents": "true"}, src, tmp_path / "q.txt"
    )
    assert get_log_options() == (
        "PdfBox --includeContents --sourceMimetype=application/pdf --targetMimetype=text/plain "
        "--targetEncoding=UTF-8 pdf txt"
    )


def test_html_and_xhtml_targets(tmp_path: Path) -> None:
    src = tmp_path / "quick.pdf"
    make_text_pdf(src, "Fish & Chips")
    ex = TikaJavaExecutor()
    html_out = tmp_path / "q.html"
    ex.transform("TikaAuto", "application/pdf", "text/html", {}, src, html_out)
    html = html_out.read_text(encoding="utf-8")
    assert html.startswith("<html>")
    assert "<title>Quick Title</title>" in html
    assert "Fish &amp; Chips" in html
    xhtml_out = tmp_path / "q.xhtml"
    ex.transform("TikaAuto", "application/pdf", "application/xhtml+xml", {}, src, xhtml_out)
    assert 'xmlns="http://www.w3.org/1999/xhtml"' in xhtml_out.read_text(encoding="utf-8")


def test_target_encoding(tmp_path: Path) -> None:
    src = tmp_path / "in.txt"
    src.write_text("café\n", encoding="utf-8")
    out = tmp_path / "out.txt"
    TikaJavaExecutor().transform(TEXT_PLAIN, TXT, TXT, {"targetEncoding": "ISO-8859-1"}, src, out)
    assert out.read_bytes() == "café\n".encode("latin-1")


def test_unknown_encoding_is_validation_error(tmp_path: Path) -> None:
    src = tmp_path / "in.txt"
    src.write_text("x", encoding="utf-8")
    with pytest.raises(ValidationError):
        TikaJavaExecutor().transform(TEXT_PLAIN, TXT, TXT, {"targetEncoding": "klingon-9"}, src, tmp_path / "o.txt")


def test_archive_listing_and_contents(tmp_path: Path) -> None:
    src = tmp_path / "bundle.zip"
    with zipfile.ZipFile(src, "w") as zf:
        zf.writestr("notes/readme.txt", "inner words")
        zf.writestr("data.bin", b"\x00\x01\x02")
    ex = TikaJavaExecutor()
    out = tmp_path / "list.txt"
    ex.transform(ARCHIVE, "application/zip", TXT, {}, src, out)
    listing = out.read_text(encoding="utf-8")
    assert "notes/readme.txt" in listing and "data.bin" in listing
    assert "inner words" not in listing
    out2 = tmp_path / "full.txt"
    ex.transform(ARCHIVE, "application/zip", TXT, {"includeContents": "true"}, src, out2)
    assert "inner words" in out2.read_text(encoding="utf-8")


def test_ooxml_text(tmp_path: Path) -> None:
    src = tmp_path / "doc.docx"
    make_docx(src, ["First paragraph", "Second paragraph"])
    out = tmp_path / "doc.txt"
    TikaJavaExecutor().transform("TikaAuto", "application/octet-stream", TXT, {}, src, out)
    assert out.read_text(encoding="utf-8") == "First paragraph\nSecond paragraph\n"


def test_auto_trusts_declared_mimetype(tmp_path: Path) -> None:
    src = tmp_path / "notes.dat"
    src.write_bytes(b"hello\x00world")
    out = tmp_path / "notes.txt"
    TikaJavaExecutor().transform("TikaAuto", TXT, TXT, {}, src, out)
    assert out.read_text(encoding="utf-8") == "hello\x00world\n"


def test_auto_falls_back_to_extension(tmp_path: Path) -> None:
    src = tmp_path / "notes.txt"
    src.write_bytes(b"hello\x00world")
    out = tmp_path / "out.txt"
    TikaJavaExecutor().transform("TikaAuto", "", TXT, {}, src, out)
    assert "hello" in out.read_text(encoding="utf-8")
    with pytest.raises(ToolFailure, match="Unsupported content type"):
        TikaJavaExecutor().transform("TikaAuto", "", TXT, {}, src.rename(tmp_path / "notes.bin"), out)


def test_choose_parser_order() -> None:
    assert choose_parser(b"%PDF-1.7", "text/plain", "a.pdf") == TEXT_PLAIN
    assert choose_parser(b"plain", "application/pdf; charset=binary", "a.txt") == PDF_BOX
    assert choose_parser(b"plain", "application/octet-stream", "a.docx") == OOXML
    assert choose_parser(b"%PDF-1.7", "application/octet-stream", "blob") == PDF_BOX


def test_library_failure_is_tool_failure_and_no_target(tmp_path: Path) -> None:
    src = tmp_path / "broken.pdf"
    src.write_bytes(b"%PDF-1.4 garbage that is not really a pdf")
    out = tmp_path / "broken.txt"
    with pytest.raises(ToolFailure):
        TikaJavaExecutor().transform(PDF_BOX, "application/pdf", TXT, {}, src, out)
    assert not out.exists()


def test_unsupported_target_mimetype(tmp_path: Path) -> None:
    src = tmp_path / "in.txt"
    src.write_text("x", encoding="utf-8")
    with pytest.raises(ToolFailure, match="Unsupported target mimetype"):
        TikaJavaExecutor().transform(TEXT_PLAIN, TXT, "image/png", {}, src, tmp_path / "o.png")


def test_unknown_transform_name(tmp_path: Path) -> None:
    src = tmp_path / "in.txt"
    src.write_text("x", encoding="utf-8")
    with pytest.raises(ToolFailure, match="Unknown transform name"):
        TikaJavaExecutor().transform("Nope", TXT, TXT, {}, src, tmp_path / "o.txt")


def test_unexpected_argument() -> None:
    with pytest.raises(ValueError, match="Unexpected argument --bogus"):
        Tika().transform(["TextPlain", "--bogus", "a", "b"])


def test_detect() -> None:
    assert detect(b"%PDF-1.7 ...") == PDF_BOX
    assert detect(b"plain words") == TEXT_PLAIN
    assert detect(b"PK\x03\x04 not really zip") == ARCHIVE
    assert OOXML in Tika().transform_names
