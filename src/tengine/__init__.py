"""Document transform engines: a PDF page renderer and in-process text and metadata extraction."""

__version__ = "0.3.0"
