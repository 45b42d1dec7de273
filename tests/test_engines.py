from pathlib import Path

import pytest

from tengine import engines
from tengine.errors import ConfigurationError
from tengine.executors import TikaJavaExecutor


@pytest.fixture(autouse=True)
def fresh_registry():
    engines.reset()
    yield
    engines.reset()


def request(tmp_path: Path, **kw) -> engines.TransformRequest:
    src = tmp_path / "in.txt"
    src.write_text("hello\n", encoding="utf-8")
    values = dict(
        source_file=src,
        target_file=tmp_path / "out.json",
        source_mimetype="text/plain",
        target_mimetype="application/json",
        transform_name="TikaAutoMetadataExtractor",
    )
    values.update(kw)
    return engines.TransformRequest(**values)


def test_select_engine() -> None:
    assert engines.select_engine("application/pdf", "image/png") == engines.PDF_RENDERER
    assert engines.select_engine("application/illustrator", "image/png") == engines.PDF_RENDERER
    assert engines.select_engine("application/pdf", "text/plain") == engines.TIKA
    assert engines.select_engine("image/png", "image/png") == engines.TIKA


def test_executors_are_cached() -> None:
    first = engines.get_executor(engines.TIKA)
    assert isinstance(first, TikaJavaExecutor)
    assert engines.get_executor(engines.TIKA) is first


def test_unknown_engine() -> None:
    with pytest.raises(ConfigurationError, match="unknown engine"):
        engines.get_executor("libreoffice")


def test_request_options_are_read_only(tmp_path: Path) -> None:
    req = request(tmp_path, options={"page": "1"})
    with pytest.raises(TypeError):
        req.options["page"] = "2"  # type: ignore[index]


def test_metadata_needs_the_in_process_engine(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setitem(engines._executors, engines.TIKA, object())
    with pytest.raises(ConfigurationError, match="does not handle metadata"):
        engines.extract_metadata(request(tmp_path))
    with pytest.raises(ConfigurationError):
        engines.embed_metadata(request(tmp_path))
    assert not (tmp_path / "out.json").exists()


def test_extract_metadata_through_registry(tmp_path: Path) -> None:
    engines.extract_metadata(request(tmp_path))
    assert '"cm:content.mimetype": "text/plain"' in (tmp_path / "out.json").read_text(encoding="utf-8")
