import pytest

from tengine.errors import ValidationError
from tengine.options import PdfRendererOptionsBuilder, parse_bool, string_to_long


def build(opts: dict) -> tuple[str, ...]:
    return (
        PdfRendererOptionsBuilder.builder()
        .with_page(opts.get("page"))
        .with_width(opts.get("width"))
        .with_height(opts.get("height"))
        .with_allow_pdf_enlargement(opts.get("allowPdfEnlargement"))
        .with_maintain_pdf_aspect_ratio(opts.get("maintainPdfAspectRatio"))
        .build()
    )


def test_tokens_follow_renderer_order() -> None:
    opts = {
        "page": "0",
        "width": "100",
        "height": "100",
        "allowPdfEnlargement": "false",
        "maintainPdfAspectRatio": "true",
    }
    assert build(opts) == ("--page=0", "--width=100", "--height=100", "--maintain-aspect-ratio")


def test_all_flags() -> None:
    opts = {
        "page": "2",
        "width": "640",
        "height": "480",
        "allowPdfEnlargement": "TRUE",
        "maintainPdfAspectRatio": "true",
    }
    assert build(opts) == (
        "--page=2",
        "--width=640",
        "--height=480",
        "--allow-enlargement",
        "--maintain-aspect-ratio",
    )


def test_same_input_same_tokens() -> None:
    opts = {"page": "1", "width": "10", "height": "20", "maintainPdfAspectRatio": "true"}
    assert build(opts) == build(dict(opts)) == build(opts)


def test_missing_options_use_defaults() -> None:
    assert build({}) == ()


def test_aspect_ratio_without_dimensions_is_omitted() -> None:
    assert build({"maintainPdfAspectRatio": "true"}) == ()
    assert build({"width": "100", "maintainPdfAspectRatio": "true"}) == ()


def test_one_dimension_only_is_dropped() -> None:
    assert build({"height": "50", "page": "3"}) == ("--page=3",)


def test_unparsable_and_negative_numbers_are_dropped() -> None:
    assert build({"page": "first", "width": "-1", "height": "10"}) == ()
    assert build({"page": "-5", "width": "abc", "height": "10"}) == ()


def test_allow_enlargement_alone() -> None:
    assert build({"allowPdfEnlargement": "true"}) == ("--allow-enlargement",)


@pytest.mark.parametrize(
    "value, expected",
    [("true", True), ("True", True), (" true ", True), ("false", False), ("yes", False), ("1", False), (None, False)],
)
def test_parse_bool(value, expected) -> None:
    assert parse_bool(value) is expected


def test_string_to_long() -> None:
    assert string_to_long(None) is None
    assert string_to_long("  ") is None
    assert string_to_long("1500") == 1500
    with pytest.raises(ValidationError):
        string_to_long("soon")
