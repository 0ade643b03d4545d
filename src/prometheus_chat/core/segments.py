"""Parse message text into typed Segments for rendering.

Two passes over the (possibly partial) message buffer:
- fence pass: ``` code fences become CODE_BLOCK; an unterminated fence runs
  to end of input, which is the normal state of a mid-stream buffer
- inline pass: every non-code span is split into lines; list lines become
  LIST_ITEM, other lines are scanned for inline code, bold and italic

Fence spans are opaque: nothing inside them is re-scanned for inline
formatting. Unmatched markers degrade to TEXT; parse() never raises.

// [LAW:dataflow-not-control-flow] parse() is a pure function: text in, Segments out.
// [LAW:one-source-of-truth] All message markup recognition lives here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar, NamedTuple, Union


# ─── Data model ──────────────────────────────────────────────────────────────


class SegmentKind(Enum):
    TEXT = "text"
    CODE_BLOCK = "code_block"
    INLINE_CODE = "inline_code"
    BOLD = "bold"
    ITALIC = "italic"
    LIST_ITEM = "list_item"
    HIGHLIGHTED = "highlighted"


@dataclass(frozen=True)
class Text:
    content: str
    kind: ClassVar[SegmentKind] = SegmentKind.TEXT


@dataclass(frozen=True)
class CodeBlock:
    language: str | None
    code: str
    # Raw fence syntax, kept for to_source(). Not part of equality.
    opening: str = field(default="", compare=False, repr=False)
    closing: str = field(default="", compare=False, repr=False)
    kind: ClassVar[SegmentKind] = SegmentKind.CODE_BLOCK

    @property
    def closed(self) -> bool:
        return bool(self.closing)


@dataclass(frozen=True)
class InlineCode:
    content: str
    kind: ClassVar[SegmentKind] = SegmentKind.INLINE_CODE


@dataclass(frozen=True)
class Bold:
    content: str
    kind: ClassVar[SegmentKind] = SegmentKind.BOLD


@dataclass(frozen=True)
class Italic:
    content: str
    kind: ClassVar[SegmentKind] = SegmentKind.ITALIC


@dataclass(frozen=True)
class ListItem:
    content: str
    indent: str = field(default="", compare=False, repr=False)
    marker: str = field(default="-", compare=False, repr=False)
    kind: ClassVar[SegmentKind] = SegmentKind.LIST_ITEM


@dataclass(frozen=True)
class Highlighted:
    content: str
    kind: ClassVar[SegmentKind] = SegmentKind.HIGHLIGHTED


Segment = Union[Text, CodeBlock, InlineCode, Bold, Italic, ListItem, Highlighted]

# One message's segments, in source order. Recomputed, never mutated.
ParsedMessage = tuple[Segment, ...]


# ─── Regex patterns ──────────────────────────────────────────────────────────

FENCE = "```"

# Fence open: three backticks at line start, rest of line carries no backtick
FENCE_OPEN_RE = re.compile(r"^```([^`\n]*)$", re.MULTILINE)

# Fence close: a line that is exactly three backticks
FENCE_CLOSE_RE = re.compile(r"^```$", re.MULTILINE)

# Non-greedy by construction: the content class excludes the delimiter, so
# every opener pairs with the nearest following closer.
INLINE_CODE_RE = re.compile(r"`([^`]+)`")
BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
ITALIC_RE = re.compile(r"\*([^*]+)\*")

_LIST_PREFIXES = ("- ", "* ")


# ─── Fence pass ──────────────────────────────────────────────────────────────


def parse(text: str) -> ParsedMessage:
    """Parse text into an ordered tuple of Segments.

    Total over all strings: worst case the whole input comes back as one
    Text segment. Empty input yields an empty tuple.
    """
    if not text:
        return ()

    segments: list[Segment] = []
    pos = 0
    while pos < len(text):
        m = FENCE_OPEN_RE.search(text, pos)
        if m is None:
            break
        if m.start() > pos:
            segments.extend(_parse_inline_span(text[pos : m.start()]))
        block, pos = _read_fence(text, m)
        segments.append(block)

    if pos < len(text):
        segments.extend(_parse_inline_span(text[pos:]))
    return tuple(_coalesce_text(segments))


def _read_fence(text: str, m: re.Match) -> tuple[CodeBlock, int]:
    """Consume one fenced block starting at m. Returns (block, end position)."""
    language = m.group(1).strip() or None
    line_end = m.end()
    content_start = line_end + 1 if line_end < len(text) else line_end
    opening = text[m.start() : content_start]

    close = FENCE_CLOSE_RE.search(text, content_start)
    if close is None:
        # Unterminated: still being typed. Everything after the fence line is code.
        return CodeBlock(language, text[content_start:], opening, ""), len(text)

    if close.start() == content_start:
        code, closing = "", FENCE
    else:
        # The newline right before the closing fence separates it from the code.
        code = text[content_start : close.start() - 1]
        closing = "\n" + FENCE
    return CodeBlock(language, code, opening, closing), close.end()


# ─── Inline pass ─────────────────────────────────────────────────────────────


class InlineMatch(NamedTuple):
    start: int
    end: int
    content: str


Matcher = Callable[[str, int], Union[InlineMatch, None]]


def _regex_matcher(pattern: re.Pattern) -> Matcher:
    def match(line: str, pos: int) -> InlineMatch | None:
        m = pattern.search(line, pos)
        if m is None:
            return None
        return InlineMatch(m.start(), m.end(), m.group(1))

    return match


# [LAW:dataflow-not-control-flow] Priority order doubles as the tie-break:
# at equal start the earlier matcher wins, so bold beats italic.
_INLINE_MATCHERS: tuple[tuple[Matcher, Callable[[str], Segment]], ...] = (
    (_regex_matcher(INLINE_CODE_RE), InlineCode),
    (_regex_matcher(BOLD_RE), Bold),
    (_regex_matcher(ITALIC_RE), Italic),
)


def _parse_inline_span(span: str) -> list[Segment]:
    """Split a non-code span into lines and classify each one."""
    segments: list[Segment] = []
    lines = span.split("\n")
    last = len(lines) - 1
    for i, line in enumerate(lines):
        item = _as_list_item(line)
        if item is not None:
            segments.append(item)
        else:
            segments.extend(_parse_inline_line(line))
        if i < last:
            segments.append(Text("\n"))
    return segments


def _as_list_item(line: str) -> ListItem | None:
    stripped = line.lstrip()
    if not stripped.startswith(_LIST_PREFIXES):
        return None
    indent = line[: len(line) - len(stripped)]
    return ListItem(stripped[2:], indent=indent, marker=stripped[0])


def _parse_inline_line(line: str) -> list[Segment]:
    """Scan one line left to right for the earliest inline match."""
    segments: list[Segment] = []
    # Cached next match per matcher; re-searched only once pos passes its start.
    pending: list[InlineMatch | None] = [match(line, 0) for match, _ in _INLINE_MATCHERS]
    pos = 0
    while pos < len(line):
        best: int | None = None
        for idx, (match, _) in enumerate(_INLINE_MATCHERS):
            hit = pending[idx]
            if hit is not None and hit.start < pos:
                hit = pending[idx] = match(line, pos)
            if hit is None:
                continue
            if best is None or hit.start < pending[best].start:
                best = idx
        if best is None:
            break

        hit = pending[best]
        if hit.start > pos:
            segments.append(Text(line[pos : hit.start]))
        segments.append(_INLINE_MATCHERS[best][1](hit.content))
        pos = hit.end

    if pos < len(line):
        segments.append(Text(line[pos:]))
    return segments


def _coalesce_text(segments: list[Segment]) -> list[Segment]:
    """Merge runs of adjacent Text segments into one."""
    merged: list[Segment] = []
    for seg in segments:
        if seg.kind == SegmentKind.TEXT and merged and merged[-1].kind == SegmentKind.TEXT:
            merged[-1] = Text(merged[-1].content + seg.content)
        elif seg.kind == SegmentKind.TEXT and not seg.content:
            continue
        else:
            merged.append(seg)
    return merged


# ─── Reconstruction ──────────────────────────────────────────────────────────


def _code_block_source(seg: CodeBlock) -> str:
    opening = seg.opening or f"{FENCE}{seg.language or ''}\n"
    return opening + seg.code + seg.closing


def _list_item_source(seg: ListItem) -> str:
    return f"{seg.indent}{seg.marker} {seg.content}"


_SOURCE_BUILDERS: dict[SegmentKind, Callable] = {
    SegmentKind.TEXT: lambda s: s.content,
    SegmentKind.HIGHLIGHTED: lambda s: s.content,
    SegmentKind.CODE_BLOCK: _code_block_source,
    SegmentKind.INLINE_CODE: lambda s: f"`{s.content}`",
    SegmentKind.BOLD: lambda s: f"**{s.content}**",
    SegmentKind.ITALIC: lambda s: f"*{s.content}*",
    SegmentKind.LIST_ITEM: _list_item_source,
}


def to_source(segments) -> str:
    """Rebuild source text from segments, re-adding stripped markup."""
    return "".join(_SOURCE_BUILDERS[seg.kind](seg) for seg in segments)


def code_blocks(segments) -> list[CodeBlock]:
    """Return the CodeBlock segments in document order."""
    return [seg for seg in segments if seg.kind == SegmentKind.CODE_BLOCK]


# ─── Search highlighting ────────────────────────────────────────────────────


def _merge_ranges(positions) -> list[tuple[int, int]]:
    ordered = sorted(positions)
    merged: list[tuple[int, int]] = [ordered[0]]
    for start, end in ordered[1:]:
        cur_start, cur_end = merged[-1]
        if start <= cur_end:
            merged[-1] = (cur_start, max(cur_end, end))
        else:
            merged.append((start, end))
    return merged


def highlight_matches(text: str, positions) -> ParsedMessage:
    """Split text into Text/Highlighted segments around (start, end) ranges.

    Overlapping and adjacent ranges are merged; ranges are clamped to the
    text. No usable range yields a single Text segment.
    """
    if not positions:
        return (Text(text),)

    segments: list[Segment] = []
    last = 0
    for start, end in _merge_ranges(positions):
        start = min(max(start, 0), len(text))
        end = min(end, len(text))
        if start >= end:
            continue
        if start > last:
            segments.append(Text(text[last:start]))
        segments.append(Highlighted(text[start:end]))
        last = end
    if last < len(text):
        segments.append(Text(text[last:]))
    return tuple(segments) if segments else (Text(text),)
