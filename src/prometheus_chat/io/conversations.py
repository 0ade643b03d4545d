"""Conversation persistence as one JSON file per conversation.

Layout under the conversations directory:
  <id>.json       full conversation (messages included)
  metadata.json   {"conversations": [ConversationMetadata, ...]}, newest first

All writes are atomic (temp file + rename).
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from prometheus_chat.io.settings import atomic_write_json

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 50
METADATA_FILE = "metadata.json"


class ConversationError(RuntimeError):
    """A conversation file could not be read or written."""


def _now() -> str:
    return datetime.now().astimezone().isoformat()


def get_conversations_dir() -> Path:
    """PROMETHEUS_DATA_DIR, or ~/.local/share/prometheus/conversations."""
    override = os.environ.get("PROMETHEUS_DATA_DIR")
    if override:
        return Path(override)
    return Path(os.path.expanduser("~/.local/share/prometheus/conversations"))


# ─── Data model ──────────────────────────────────────────────────────────────


@dataclass
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=_now)

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        msg = cls(role=str(data.get("role", "user")), content=str(data.get("content", "")))
        if data.get("id"):
            msg.id = str(data["id"])
        if data.get("timestamp"):
            msg.timestamp = str(data["timestamp"])
        return msg


@dataclass
class Conversation:
    name: str
    model: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: str = field(default_factory=_now)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def with_timestamp_name(cls, model: Optional[str] = None) -> "Conversation":
        return cls(name=f"Chat {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", model=model)

    @classmethod
    def from_dict(cls, data: dict) -> "Conversation":
        conv = cls(
            name=str(data.get("name", "")),
            model=data.get("model"),
            id=str(data.get("id") or uuid.uuid4()),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", []) if isinstance(m, dict)],
            created_at=str(data.get("created_at") or _now()),
            updated_at=str(data.get("updated_at") or ""),
        )
        return conv

    def to_dict(self) -> dict:
        return asdict(self)

    def touch(self) -> None:
        self.updated_at = _now()

    def add_message(self, message: ChatMessage) -> None:
        self.messages.append(message)
        self.touch()

    def remove_message(self, index: int) -> None:
        if 0 <= index < len(self.messages):
            del self.messages[index]
            self.touch()

    def update_message(self, index: int, content: str) -> None:
        if 0 <= index < len(self.messages):
            self.messages[index].content = content
            self.touch()

    def clear_messages_after(self, index: int) -> None:
        """Drop every message after index (used when an earlier message is edited)."""
        if 0 <= index < len(self.messages):
            del self.messages[index + 1 :]
            self.touch()


@dataclass
class ConversationMetadata:
    id: str
    name: str
    preview: str
    updated_at: str
    message_count: int

    @classmethod
    def from_conversation(cls, conv: Conversation) -> "ConversationMetadata":
        if not conv.messages:
            preview = "Empty conversation"
        else:
            first_user = next((m for m in conv.messages if m.role == "user"), conv.messages[0])
            preview = first_user.content
            if len(preview) > PREVIEW_CHARS:
                preview = preview[:PREVIEW_CHARS] + "..."
        return cls(
            id=conv.id,
            name=conv.name,
            preview=preview,
            updated_at=conv.updated_at,
            message_count=len(conv.messages),
        )


# ─── Manager ─────────────────────────────────────────────────────────────────


class ConversationManager:
    """Reads and writes conversations under one directory."""

    def __init__(self, base_dir: Path | str | None = None):
        self.base_dir = Path(base_dir) if base_dir is not None else get_conversations_dir()
        self.metadata_path = self.base_dir / METADATA_FILE

    def _conversation_path(self, conversation_id: str) -> Path:
        return self.base_dir / f"{conversation_id}.json"

    def load_metadata(self) -> list[ConversationMetadata]:
        """Metadata entries, newest first. Missing/corrupt index reads as empty."""
        try:
            raw = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("unreadable conversation index %s: %s", self.metadata_path, e)
            return []
        entries = []
        for item in raw.get("conversations", []) if isinstance(raw, dict) else []:
            try:
                entries.append(ConversationMetadata(**item))
            except TypeError:
                logger.warning("skipping malformed metadata entry: %r", item)
        entries.sort(key=lambda m: m.updated_at, reverse=True)
        return entries

    def save_metadata(self, entries: list[ConversationMetadata]) -> None:
        ordered = sorted(entries, key=lambda m: m.updated_at, reverse=True)
        atomic_write_json(self.metadata_path, {"conversations": [asdict(m) for m in ordered]})

    def load_conversation(self, conversation_id: str) -> Conversation:
        path = self._conversation_path(conversation_id)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConversationError(f"Conversation not found: {conversation_id}") from e
        except (json.JSONDecodeError, OSError) as e:
            raise ConversationError(f"Failed to load conversation {conversation_id}: {e}") from e
        if not isinstance(data, dict):
            raise ConversationError(f"Failed to load conversation {conversation_id}: not an object")
        return Conversation.from_dict(data)

    def save_conversation(self, conversation: Conversation) -> None:
        try:
            atomic_write_json(self._conversation_path(conversation.id), conversation.to_dict())
            entries = [m for m in self.load_metadata() if m.id != conversation.id]
            entries.append(ConversationMetadata.from_conversation(conversation))
            self.save_metadata(entries)
        except OSError as e:
            raise ConversationError(f"Failed to save conversation {conversation.id}: {e}") from e
        logger.debug("saved conversation id=%s messages=%d", conversation.id, len(conversation.messages))

    def delete_conversation(self, conversation_id: str) -> None:
        try:
            self._conversation_path(conversation_id).unlink(missing_ok=True)
            self.save_metadata([m for m in self.load_metadata() if m.id != conversation_id])
        except OSError as e:
            raise ConversationError(f"Failed to delete conversation {conversation_id}: {e}") from e

    def list_conversations(self) -> list[ConversationMetadata]:
        return self.load_metadata()

    def load_all(self) -> list[Conversation]:
        """Every conversation in the index that can still be read."""
        conversations = []
        for meta in self.load_metadata():
            try:
                conversations.append(self.load_conversation(meta.id))
            except ConversationError as e:
                logger.warning("%s", e)
        return conversations
