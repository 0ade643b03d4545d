"""Per-message render state for streaming and settled chat messages.

Each message is either Streaming (append-only raw buffer, re-parsed on
demand) or Settled (immutable cached parse). Transitions happen only via
on_token / on_stream_complete (and the explicit begin_stream / settle / forget
lifecycle calls used for regenerate, load and delete).

Streaming buffers are always re-parsed from the start: later tokens can
retroactively change how earlier text classifies (a fence gets its closer,
a dangling * gets its partner), so prior segment boundaries are never reused.

// [LAW:one-source-of-truth] The driver owns the message_id -> parse cache;
//   there is no ambient cache anywhere else.
// [LAW:single-enforcer] Unknown message ids are rejected in _require() only.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Union

from prometheus_chat.core.segments import CodeBlock, ParsedMessage, code_blocks, parse

logger = logging.getLogger(__name__)

COPY_FEEDBACK_SECONDS = 2.0

RenderListener = Callable[[str, ParsedMessage, bool], None]


# ─── State machine ───────────────────────────────────────────────────────────


@dataclass
class Streaming:
    """In-flight message. raw_buffer only ever grows."""

    raw_buffer: str = ""
    last_rendered_len: int = 0
    segments: ParsedMessage = ()

    @property
    def is_streaming(self) -> bool:
        return True

    @property
    def raw(self) -> str:
        return self.raw_buffer


@dataclass(frozen=True)
class Settled:
    raw: str
    parsed: ParsedMessage

    @property
    def is_streaming(self) -> bool:
        return False


StreamState = Union[Streaming, Settled]


@dataclass
class CopyFeedbackState:
    """When a code block was last copied. The display layer owns the revert timer."""

    copied_at: float | None = None

    def is_active(self, now: float, window: float = COPY_FEEDBACK_SECONDS) -> bool:
        return self.copied_at is not None and (now - self.copied_at) < window


# ─── Driver ──────────────────────────────────────────────────────────────────


@dataclass
class RenderDriver:
    """Holds one StreamState per message and publishes re-rendered segments.

    Single writer per message; no locking. A host that streams on a worker
    thread must marshal calls onto its UI thread.
    """

    clock: Callable[[], float] = time.monotonic
    copy_feedback_seconds: float = COPY_FEEDBACK_SECONDS
    _states: dict[str, StreamState] = field(default_factory=dict, init=False, repr=False)
    _copy_feedback: dict[tuple[str, int], CopyFeedbackState] = field(
        default_factory=dict, init=False, repr=False
    )
    _listeners: list[RenderListener] = field(default_factory=list, init=False, repr=False)

    # ─── Events ──────────────────────────────────────────────────────────

    def subscribe(self, listener: RenderListener) -> Callable[[], None]:
        """Register a painted-segment listener. Returns its disposer."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def _publish(self, message_id: str, segments: ParsedMessage, streaming: bool) -> None:
        for listener in list(self._listeners):
            listener(message_id, segments, streaming)

    # ─── Lifecycle ───────────────────────────────────────────────────────

    def begin_stream(self, message_id: str) -> None:
        """Start (or restart, for regenerate) a message with an empty buffer."""
        self._states[message_id] = Streaming()
        self._clear_copy_feedback(message_id)
        self._publish(message_id, (), True)

    def on_token(self, message_id: str, token: str) -> ParsedMessage:
        """Append a token to the message buffer and re-render it.

        An unknown message starts streaming here; a settled one resumes from
        its settled content.
        """
        state = self._states.get(message_id)
        if not isinstance(state, Streaming):
            state = Streaming(raw_buffer=state.raw if state is not None else "")
            self._states[message_id] = state
        state.raw_buffer += token
        segments = self._render_streaming(state)
        self._publish(message_id, segments, True)
        return segments

    def on_stream_complete(self, message_id: str) -> ParsedMessage:
        """Final parse of the buffer; the result becomes the settled parse."""
        state = self._require(message_id)
        if state is None:
            return ()
        if isinstance(state, Settled):
            return state.parsed
        settled = Settled(raw=state.raw_buffer, parsed=parse(state.raw_buffer))
        self._states[message_id] = settled
        logger.debug(
            "stream complete id=%s chars=%d segments=%d",
            message_id,
            len(settled.raw),
            len(settled.parsed),
        )
        self._publish(message_id, settled.parsed, False)
        return settled.parsed

    def settle(self, message_id: str, content: str) -> ParsedMessage:
        """Load or replace a message's content as settled (history load, edit)."""
        previous = self._states.get(message_id)
        if previous is not None and previous.raw == content and isinstance(previous, Settled):
            return previous.parsed
        settled = Settled(raw=content, parsed=parse(content))
        self._states[message_id] = settled
        self._clear_copy_feedback(message_id)
        self._publish(message_id, settled.parsed, False)
        return settled.parsed

    def forget(self, message_id: str) -> None:
        """Drop all state for a message. Unknown ids are ignored."""
        self._states.pop(message_id, None)
        self._clear_copy_feedback(message_id)

    # ─── Queries ─────────────────────────────────────────────────────────

    def render(self, message_id: str) -> ParsedMessage:
        """Current best-effort segments for a message."""
        state = self._require(message_id)
        if state is None:
            return ()
        if isinstance(state, Settled):
            return state.parsed
        return self._render_streaming(state)

    def is_streaming(self, message_id: str) -> bool:
        state = self._states.get(message_id)
        return state is not None and state.is_streaming

    def state(self, message_id: str) -> StreamState | None:
        return self._states.get(message_id)

    def raw_content(self, message_id: str) -> str:
        state = self._require(message_id)
        return state.raw if state is not None else ""

    def message_ids(self) -> list[str]:
        return list(self._states)

    # ─── Copy ────────────────────────────────────────────────────────────

    def copy_code_block(self, message_id: str, block_index: int) -> str:
        """Return the code of the n-th code block and stamp its copy feedback."""
        if self._require(message_id) is None:
            return ""
        blocks: list[CodeBlock] = code_blocks(self.render(message_id))
        assert 0 <= block_index < len(blocks), (
            f"code block {block_index} out of range for {message_id!r} ({len(blocks)} blocks)"
        )
        if not 0 <= block_index < len(blocks):
            return ""
        self._copy_feedback[(message_id, block_index)] = CopyFeedbackState(copied_at=self.clock())
        return blocks[block_index].code

    def copy_message(self, message_id: str) -> str:
        return self.raw_content(message_id)

    def copy_feedback(self, message_id: str, block_index: int) -> CopyFeedbackState:
        return self._copy_feedback.get((message_id, block_index), CopyFeedbackState())

    def is_copied(self, message_id: str, block_index: int) -> bool:
        return self.copy_feedback(message_id, block_index).is_active(
            self.clock(), self.copy_feedback_seconds
        )

    def copied_blocks(self, message_id: str) -> frozenset[int]:
        """Indexes of this message's code blocks currently showing copy feedback."""
        now = self.clock()
        return frozenset(
            idx
            for (mid, idx), fb in self._copy_feedback.items()
            if mid == message_id and fb.is_active(now, self.copy_feedback_seconds)
        )

    # ─── Internals ───────────────────────────────────────────────────────

    def _render_streaming(self, state: Streaming) -> ParsedMessage:
        # Re-parse only when tokens arrived since the last parse.
        if state.last_rendered_len != len(state.raw_buffer) or not state.raw_buffer:
            state.segments = parse(state.raw_buffer)
            state.last_rendered_len = len(state.raw_buffer)
        return state.segments

    def _clear_copy_feedback(self, message_id: str) -> None:
        for key in [k for k in self._copy_feedback if k[0] == message_id]:
            del self._copy_feedback[key]

    def _require(self, message_id: str) -> StreamState | None:
        """Look up a message; unknown ids are a caller contract violation.

        Fatal under assertions (debug); a logged no-op under ``python -O``.
        """
        state = self._states.get(message_id)
        if state is None:
            logger.error("render driver: unknown message id %r", message_id)
        assert state is not None, f"unknown message id: {message_id!r}"
        return state
