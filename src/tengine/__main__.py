"""Module entry point for `python -m tengine`.

Use absolute imports so freezing (PyInstaller) works without package context.
"""

from tengine.cli import main

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
