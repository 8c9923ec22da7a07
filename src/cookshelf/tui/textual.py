from __future__ import annotations

from ..errors import ConfigError

try:  # Textual is optional at import time for non-TUI usage.
    from textual.app import App, ComposeResult
    from textual.containers import Vertical
    from textual.widgets import Footer, Header, Input, Label, ListItem, ListView, Static
except ImportError as exc:  # pragma: no cover
    raise ConfigError(
        "Textual is required for --pick. Install cookshelf with the 'tui' extra."
    ) from exc

__all__ = [
    "App",
    "ComposeResult",
    "Footer",
    "Header",
    "Input",
    "Label",
    "ListItem",
    "ListView",
    "Static",
    "Vertical",
]
