"""Chat message widget.

One MessageView per conversation message. It keeps the last segments the
render driver published for its message and repaints from them.
"""

from textual.widgets import Static

from prometheus_chat.core.palette import Theme
from prometheus_chat.tui import rendering


class MessageView(Static):
    DEFAULT_CSS = """
    MessageView {
        height: auto;
        padding: 0 1;
        margin: 0 0 1 0;
    }
    MessageView.-user {
        border-left: thick $secondary;
    }
    MessageView.-assistant {
        border-left: thick $primary;
    }
    """

    def __init__(self, message_id: str, role: str, theme: Theme):
        super().__init__("", classes=f"-{role}")
        self.message_id = message_id
        self.role = role
        self._theme = theme
        self._segments = ()
        self._streaming = False
        self._copied: frozenset[int] = frozenset()

    def show(self, segments, streaming: bool) -> None:
        self._segments = segments
        self._streaming = streaming
        self._repaint()

    def set_copied(self, copied: frozenset[int]) -> None:
        """Update copy feedback; repaints only on change."""
        if copied == self._copied:
            return
        self._copied = copied
        self._repaint()

    def set_theme(self, theme: Theme) -> None:
        self._theme = theme
        self._repaint()

    def _repaint(self) -> None:
        self.update(
            rendering.render_message(
                self.role,
                self._segments,
                self._theme,
                streaming=self._streaming,
                copied=self._copied,
            )
        )
