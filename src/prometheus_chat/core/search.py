"""Full-text search over saved conversations.

The index maps a lowercased term to the messages it occurs in, with the
character positions of every occurrence so hits can be highlighted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from prometheus_chat.core.segments import ParsedMessage, highlight_matches

WORD_RE = re.compile(r"\w+")
CONTEXT_WINDOW = 50


@dataclass(frozen=True)
class SearchResult:
    conversation_id: str
    message_index: int
    match_positions: tuple[tuple[int, int], ...]
    context: str
    role: str


def _tokenize(text: str) -> dict[str, list[tuple[int, int]]]:
    tokens: dict[str, list[tuple[int, int]]] = {}
    for m in WORD_RE.finditer(text):
        tokens.setdefault(m.group(0), []).append((m.start(), m.end()))
    return tokens


def extract_context(text: str, positions, window: int = CONTEXT_WINDOW) -> str:
    """Text around the first match, with ellipses where it was cut."""
    if not positions:
        return ""
    start, end = positions[0]
    ctx_start = max(start - window, 0)
    ctx_end = min(end + window, len(text))
    context = text[ctx_start:ctx_end]
    if ctx_start > 0:
        context = "..." + context
    if ctx_end < len(text):
        context = context + "..."
    return context


@dataclass
class SearchIndexer:
    min_word_length: int = 2

    def index_conversation(self, conversation) -> dict[str, list[SearchResult]]:
        """Return lowercased term -> one SearchResult per message containing it."""
        index: dict[str, list[SearchResult]] = {}
        for message_index, message in enumerate(conversation.messages):
            by_term: dict[str, list[tuple[int, int]]] = {}
            for term, positions in _tokenize(message.content).items():
                if len(term) < self.min_word_length:
                    continue
                by_term.setdefault(term.lower(), []).extend(positions)
            for term, positions in by_term.items():
                positions.sort()
                index.setdefault(term, []).append(
                    SearchResult(
                        conversation_id=conversation.id,
                        message_index=message_index,
                        match_positions=tuple(positions),
                        context=extract_context(message.content, positions),
                        role=message.role,
                    )
                )
        return index


@dataclass(frozen=True)
class SearchQuery:
    text: str
    case_sensitive: bool = False
    whole_word: bool = False

    def execute(self, index: dict[str, list[SearchResult]], contents=None) -> list[SearchResult]:
        """Run against an index built by SearchIndexer.

        contents maps (conversation_id, message_index) -> message text; it is
        needed only for case-sensitive queries, since the index is lowercased.
        """
        if not self.text:
            return []
        needle = self.text.lower()
        if self.whole_word:
            candidates = list(index.get(needle, []))
        else:
            candidates = [r for term, results in index.items() if needle in term for r in results]

        if self.case_sensitive and contents is not None:
            candidates = [
                r for r in candidates
                if self.text in contents.get((r.conversation_id, r.message_index), "")
            ]

        candidates.sort(key=lambda r: (r.conversation_id, r.message_index))
        results: list[SearchResult] = []
        seen: set[tuple[str, int]] = set()
        for r in candidates:
            key = (r.conversation_id, r.message_index)
            if key in seen:
                continue
            seen.add(key)
            results.append(r)
        return results


@dataclass
class SearchEngine:
    indexer: SearchIndexer = field(default_factory=SearchIndexer)
    _index: dict[str, list[SearchResult]] = field(default_factory=dict, init=False, repr=False)
    _contents: dict[tuple[str, int], str] = field(default_factory=dict, init=False, repr=False)
    _indexed: list[str] = field(default_factory=list, init=False, repr=False)

    @property
    def indexed_conversations(self) -> list[str]:
        return list(self._indexed)

    def index_conversation(self, conversation) -> None:
        """(Re)index a conversation, replacing any previous entries for it."""
        self.remove_conversation(conversation.id)
        for term, results in self.indexer.index_conversation(conversation).items():
            self._index.setdefault(term, []).extend(results)
        for i, message in enumerate(conversation.messages):
            self._contents[(conversation.id, i)] = message.content
        self._indexed.append(conversation.id)

    def remove_conversation(self, conversation_id: str) -> None:
        if conversation_id in self._indexed:
            self._indexed.remove(conversation_id)
        for term in list(self._index):
            kept = [r for r in self._index[term] if r.conversation_id != conversation_id]
            if kept:
                self._index[term] = kept
            else:
                del self._index[term]
        for key in [k for k in self._contents if k[0] == conversation_id]:
            del self._contents[key]

    def search(self, query: SearchQuery) -> list[SearchResult]:
        return query.execute(self._index, self._contents)

    def highlight(self, result: SearchResult, content: str) -> ParsedMessage:
        return highlight_matches(content, result.match_positions)
