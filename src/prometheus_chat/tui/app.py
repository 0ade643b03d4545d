"""Main TUI application using Textual.

// [LAW:locality-or-seam] Thin coordinator. Conversation logic lives in
//   ChatController, markup in core.segments, painting in tui.rendering.
// [LAW:single-enforcer] The render driver is only touched on the UI thread;
//   the streaming worker marshals through call_from_thread.
"""

from __future__ import annotations

import logging
import threading

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Footer, Header, Input

from prometheus_chat.app.chat_controller import ChatController
from prometheus_chat.core import palette
from prometheus_chat.core.segments import code_blocks
from prometheus_chat.io.conversations import ConversationError
from prometheus_chat.pipeline.ollama_client import OllamaError
from prometheus_chat.tui.widgets import MessageView

logger = logging.getLogger(__name__)

# Copy feedback is checked on this cadence; the 2 s window lives in the driver.
_COPY_FEEDBACK_POLL_S = 0.25


class PrometheusApp(App):
    """Chat with a local Ollama model."""

    TITLE = "Prometheus"

    CSS = """
    #messages {
        height: 1fr;
    }
    #prompt {
        dock: bottom;
    }
    """

    BINDINGS = [
        Binding("ctrl+y", "copy_code", "Copy code", priority=True),
        Binding("ctrl+o", "copy_message", "Copy reply", priority=True),
        Binding("ctrl+r", "regenerate", "Regenerate", priority=True),
        Binding("ctrl+n", "new_chat", "New chat", priority=True),
        Binding("ctrl+t", "next_theme", "Theme", priority=True),
        Binding("escape", "cancel", "Stop"),
    ]

    def __init__(self, controller: ChatController, theme_name: str | None = None):
        super().__init__()
        self.controller = controller
        self._chat_theme = palette.get_theme(theme_name)
        self._views: dict[str, MessageView] = {}
        self._copy_cursor: dict[str, int] = {}
        self._dispose_listener = None
        self._ui_thread: int | None = None

    def _dispatch(self, fn, *args):
        """Run fn on the UI thread, marshalling from workers."""
        if threading.get_ident() == self._ui_thread:
            return fn(*args)
        return self.call_from_thread(fn, *args)

    def compose(self) -> ComposeResult:
        yield Header()
        yield VerticalScroll(id="messages")
        yield Input(placeholder="Ask something… (Enter to send)", id="prompt")
        yield Footer()

    def on_mount(self) -> None:
        self._ui_thread = threading.get_ident()
        self.controller.dispatch = self._dispatch
        driver = self.controller.driver
        self._dispose_listener = driver.subscribe(self._on_segments)
        self.sub_title = self.controller.conversation.name
        for message in self.controller.conversation.messages:
            self._on_segments(message.id, driver.render(message.id), False)
        self.set_interval(_COPY_FEEDBACK_POLL_S, self._refresh_copy_feedback)
        self.query_one("#prompt", Input).focus()

    def on_unmount(self) -> None:
        if self._dispose_listener is not None:
            self._dispose_listener()

    # ─── Driver events ───────────────────────────────────────────────────

    def _role_of(self, message_id: str) -> str:
        # A reply being streamed is not in the conversation yet.
        for message in reversed(self.controller.conversation.messages):
            if message.id == message_id:
                return message.role
        return "assistant"

    def _on_segments(self, message_id: str, segments, streaming: bool) -> None:
        view = self._views.get(message_id)
        if view is None:
            view = MessageView(message_id, self._role_of(message_id), self._chat_theme)
            self._views[message_id] = view
            messages = self.query_one("#messages", VerticalScroll)
            messages.mount(view)
        view.show(segments, streaming)
        self.query_one("#messages", VerticalScroll).scroll_end(animate=False)

    def _refresh_copy_feedback(self) -> None:
        driver = self.controller.driver
        for message_id, view in self._views.items():
            view.set_copied(driver.copied_blocks(message_id))

    def _clear_views(self) -> None:
        for view in self._views.values():
            view.remove()
        self._views.clear()
        self._copy_cursor.clear()

    # ─── Input ───────────────────────────────────────────────────────────

    def on_input_submitted(self, event: Input.Submitted) -> None:
        prompt = event.value.strip()
        if not prompt:
            return
        if self.controller.streaming_message_id is not None:
            self.notify("Still streaming, press Esc to stop", severity="warning")
            return
        event.input.value = ""
        self.controller.add_user_message(prompt)
        self._start_stream(self.controller.stream_reply)

    def _start_stream(self, fn) -> None:
        def _do_stream():
            try:
                fn()
            except OllamaError as e:
                logger.error("stream failed: %s", e)
                self.call_from_thread(self.notify, str(e), severity="error", timeout=8)
            except ConversationError as e:
                logger.error("save failed: %s", e)
                self.call_from_thread(self.notify, str(e), severity="error", timeout=8)
            finally:
                self.call_from_thread(self._prune_views)

        self.run_worker(_do_stream, thread=True, exclusive=True)

    def _prune_views(self) -> None:
        """Remove views of messages the driver dropped (e.g. empty replies)."""
        known = set(self.controller.driver.message_ids())
        for message_id in [mid for mid in self._views if mid not in known]:
            self._views.pop(message_id).remove()

    # ─── Actions ─────────────────────────────────────────────────────────

    def _last_assistant_id(self) -> str | None:
        for message in reversed(self.controller.conversation.messages):
            if message.role == "assistant":
                return message.id
        return self.controller.streaming_message_id

    def action_copy_code(self) -> None:
        """Copy the next code block of the latest reply (cycles through them)."""
        message_id = self._last_assistant_id()
        if message_id is None:
            return
        driver = self.controller.driver
        blocks = code_blocks(driver.render(message_id))
        if not blocks:
            self.notify("No code block in the last reply", severity="warning")
            return
        index = self._copy_cursor.get(message_id, 0) % len(blocks)
        self._copy_cursor[message_id] = index + 1
        self.copy_to_clipboard(driver.copy_code_block(message_id, index))
        self._refresh_copy_feedback()

    def action_copy_message(self) -> None:
        message_id = self._last_assistant_id()
        if message_id is None:
            return
        self.copy_to_clipboard(self.controller.driver.copy_message(message_id))
        self.notify("Copied reply")

    def action_regenerate(self) -> None:
        if self.controller.streaming_message_id is not None:
            return
        last = self.controller.conversation.messages[-1:] or None
        if last is None:
            return
        if last[0].role == "assistant":
            view = self._views.pop(last[0].id, None)
            if view is not None:
                view.remove()
        self._start_stream(self.controller.regenerate)

    def action_cancel(self) -> None:
        if self.controller.streaming_message_id is not None:
            self.controller.cancel()
            self.notify("Stopped")

    def action_new_chat(self) -> None:
        if self.controller.streaming_message_id is not None:
            return
        self._clear_views()
        conversation = self.controller.new_conversation()
        self.sub_title = conversation.name

    def action_next_theme(self) -> None:
        names = palette.theme_names()
        current = names.index(self._chat_theme.name) if self._chat_theme.name in names else 0
        self._chat_theme = palette.get_theme(names[(current + 1) % len(names)])
        for view in self._views.values():
            view.set_theme(self._chat_theme)
        self.notify(f"Theme: {self._chat_theme.name}")
