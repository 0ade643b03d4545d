"""Rich renderables for parsed message segments.

Inline segments accumulate into one rich Text; each CodeBlock breaks the
flow with a header line (language + copy label) and a Syntax body.

// [LAW:dataflow-not-control-flow] Inline styling dispatches via _INLINE_STYLERS.
"""

from __future__ import annotations

from rich.console import ConsoleRenderable, Group
from rich.syntax import Syntax
from rich.text import Text

from prometheus_chat.core.palette import Theme, get_theme
from prometheus_chat.core.segments import SegmentKind

STREAMING_CURSOR = "▌"
COPY_LABEL = "⧉ Copy"
COPIED_LABEL = "✓ Copied!"
BULLET = "•"

_ROLE_LABELS = {"user": "You", "assistant": "Assistant"}


def _append_text(t: Text, seg, theme: Theme) -> None:
    t.append(seg.content)


def _append_inline_code(t: Text, seg, theme: Theme) -> None:
    t.append(f"`{seg.content}`", style=theme.primary)


def _append_bold(t: Text, seg, theme: Theme) -> None:
    t.append(seg.content, style="bold")


def _append_italic(t: Text, seg, theme: Theme) -> None:
    t.append(seg.content, style="italic")


def _append_list_item(t: Text, seg, theme: Theme) -> None:
    t.append(seg.indent)
    t.append(BULLET, style=theme.secondary)
    t.append(" ")
    t.append(seg.content)


def _append_highlighted(t: Text, seg, theme: Theme) -> None:
    t.append(seg.content, style=f"reverse {theme.primary}")


_INLINE_STYLERS = {
    SegmentKind.TEXT: _append_text,
    SegmentKind.INLINE_CODE: _append_inline_code,
    SegmentKind.BOLD: _append_bold,
    SegmentKind.ITALIC: _append_italic,
    SegmentKind.LIST_ITEM: _append_list_item,
    SegmentKind.HIGHLIGHTED: _append_highlighted,
}


def render_code_header(language: str | None, index: int, copied: bool, theme: Theme) -> Text:
    """One-line label above a code block: [lang] and the copy affordance."""
    t = Text()
    t.append(f"[{language or 'code'}]", style=f"bold {theme.secondary}")
    t.append(" ")
    if copied:
        t.append(COPIED_LABEL, style="bold green")
    else:
        t.append(f"{COPY_LABEL} #{index + 1}", style="dim")
    return t


def render_code_block(seg, index: int, copied: bool, theme: Theme) -> ConsoleRenderable:
    body = Syntax(
        seg.code,
        seg.language or "text",
        theme=theme.code_theme,
        word_wrap=True,
    )
    return Group(render_code_header(seg.language, index, copied, theme), body)


def _strip_trailing_newline(t: Text) -> Text:
    # Newline before a fence is structural; the block itself starts a new line.
    if t.plain.endswith("\n"):
        t.right_crop(1)
    return t


def render_segments(
    segments,
    theme: Theme | None = None,
    *,
    streaming: bool = False,
    copied: frozenset[int] = frozenset(),
) -> ConsoleRenderable:
    """Build a renderable for one message's segments.

    streaming appends a cursor to the live tail; copied holds code block
    indexes currently showing "Copied!" feedback.
    """
    theme = theme or get_theme(None)
    parts: list[ConsoleRenderable] = []
    current = Text()
    block_index = 0
    after_block = False

    for seg in segments:
        if seg.kind == SegmentKind.CODE_BLOCK:
            if current.plain:
                parts.append(_strip_trailing_newline(current))
            current = Text()
            parts.append(render_code_block(seg, block_index, block_index in copied, theme))
            block_index += 1
            after_block = True
            continue
        if after_block and seg.kind == SegmentKind.TEXT and seg.content.startswith("\n"):
            # Text after a code block starts with the closing fence's newline.
            current.append(seg.content[1:])
        else:
            _INLINE_STYLERS[seg.kind](current, seg, theme)
        after_block = False

    if streaming:
        current.append(STREAMING_CURSOR, style=f"blink {theme.primary}")
    if current.plain or not parts:
        parts.append(current)
    return parts[0] if len(parts) == 1 else Group(*parts)


def render_role_header(role: str, theme: Theme | None = None, *, streaming: bool = False) -> Text:
    theme = theme or get_theme(None)
    t = Text(_ROLE_LABELS.get(role, role.title()), style=f"bold {theme.primary}" if role == "assistant" else "bold")
    if streaming:
        t.append(" …", style="dim")
    return t


def render_message(
    role: str,
    segments,
    theme: Theme | None = None,
    *,
    streaming: bool = False,
    copied: frozenset[int] = frozenset(),
) -> ConsoleRenderable:
    """Role header plus rendered segments."""
    return Group(
        render_role_header(role, theme, streaming=streaming),
        render_segments(segments, theme, streaming=streaming, copied=copied),
    )
