"""
Base class for all shlange console panes.
Provides the refresh_content() hook the app calls on persona switches
and on the refresh binding, plus a section header helper.
"""
from __future__ import annotations
from textual.widget import Widget
from textual.widgets import Static


class ShlangePane(Widget):
    """
    Base widget for console panel content.
    Subclass this, implement compose() and optionally refresh_content().
    """
    DEFAULT_CSS = """
    ShlangePane {
        height: 1fr;
        width: 1fr;
    }
    """

    def refresh_content(self) -> None:
        """Called by the app to request a data refresh. Override in subclasses."""
        self.refresh()

    # ── Helpers ──────────────────────────────────────────────────────────────
    @staticmethod
    def section(title: str) -> Static:
        """Return a styled section header widget."""
        return Static(f"[bold magenta]── {title} ──[/bold magenta]", markup=True)
