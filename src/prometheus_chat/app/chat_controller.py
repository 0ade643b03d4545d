"""Conversation controller: user prompt -> streamed reply -> saved conversation.

Owns one Conversation and drives a RenderDriver with it. Every driver call
goes through `dispatch`, so a UI that streams on a worker thread can pass its
own thread-marshalling function (e.g. textual's App.call_from_thread) and
keep the driver single-writer.

// [LAW:single-enforcer] Conversation mutation and persistence happen here only.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from prometheus_chat.core.render_driver import RenderDriver
from prometheus_chat.io.conversations import ChatMessage, Conversation, ConversationManager
from prometheus_chat.pipeline.ollama_client import GenerationOptions, OllamaClient, OllamaError

logger = logging.getLogger(__name__)


def _direct(fn, *args):
    return fn(*args)


class ChatController:
    def __init__(
        self,
        client: OllamaClient,
        driver: RenderDriver,
        manager: ConversationManager | None = None,
        conversation: Conversation | None = None,
        *,
        model: str,
        options: GenerationOptions | None = None,
        max_history: int = 1000,
        dispatch: Callable = _direct,
    ):
        self.client = client
        self.driver = driver
        self.manager = manager
        self.model = model
        self.options = options or GenerationOptions()
        self.max_history = max_history
        self.dispatch = dispatch
        self.conversation = conversation or Conversation.with_timestamp_name(model)
        self._cancel = threading.Event()
        self._streaming_id: str | None = None
        self.load(self.conversation)

    # ─── Conversation lifecycle ──────────────────────────────────────────

    def load(self, conversation: Conversation) -> None:
        """Switch to a conversation; every message is parsed once, settled."""
        for message_id in self.driver.message_ids():
            self.dispatch(self.driver.forget, message_id)
        self.conversation = conversation
        for message in conversation.messages:
            self.dispatch(self.driver.settle, message.id, message.content)

    def new_conversation(self) -> Conversation:
        self.load(Conversation.with_timestamp_name(self.model))
        return self.conversation

    def save(self) -> None:
        if self.manager is not None and self.conversation.messages:
            self.manager.save_conversation(self.conversation)

    @property
    def streaming_message_id(self) -> str | None:
        return self._streaming_id

    # ─── Sending ─────────────────────────────────────────────────────────

    def _history_payload(self) -> list[dict]:
        messages = self.conversation.messages[-self.max_history:]
        return [{"role": m.role, "content": m.content} for m in messages]

    def add_user_message(self, prompt: str) -> ChatMessage:
        message = ChatMessage(role="user", content=prompt)
        self.conversation.add_message(message)
        self.dispatch(self.driver.settle, message.id, prompt)
        return message

    def send(self, prompt: str) -> ChatMessage:
        """Append the user prompt and stream the assistant reply."""
        self.add_user_message(prompt)
        return self.stream_reply()

    def stream_reply(self) -> ChatMessage:
        """Stream an assistant reply to the current history.

        On any error the partial reply is kept (when non-empty) and the
        conversation saved before the error propagates.
        """
        reply = ChatMessage(role="assistant", content="")
        history = self._history_payload()
        self._cancel.clear()
        self._streaming_id = reply.id
        self.dispatch(self.driver.begin_stream, reply.id)
        parts: list[str] = []
        try:
            for token in self.client.stream_chat(self.model, history, self.options):
                if self._cancel.is_set():
                    logger.info("stream cancelled id=%s", reply.id)
                    break
                parts.append(token)
                self.dispatch(self.driver.on_token, reply.id, token)
        except OllamaError as e:
            logger.warning("stream failed id=%s kind=%s: %s", reply.id, e.kind, e)
            raise
        except Exception:
            logger.exception("stream aborted id=%s", reply.id)
            raise
        finally:
            self._finish(reply, parts)
        return reply

    def _finish(self, reply: ChatMessage, parts: list[str]) -> None:
        self._streaming_id = None
        reply.content = "".join(parts)
        if reply.content:
            self.dispatch(self.driver.on_stream_complete, reply.id)
            self.conversation.add_message(reply)
        else:
            self.dispatch(self.driver.forget, reply.id)
        self.save()

    def cancel(self) -> None:
        """Stop the in-flight stream at the next token."""
        self._cancel.set()

    # ─── Editing ─────────────────────────────────────────────────────────

    def regenerate(self) -> ChatMessage | None:
        """Replace the last assistant reply with a freshly streamed one."""
        messages = self.conversation.messages
        if not messages:
            return None
        if messages[-1].role == "assistant":
            dropped = messages[-1]
            self.conversation.remove_message(len(messages) - 1)
            self.dispatch(self.driver.forget, dropped.id)
        return self.stream_reply()

    def edit_message(self, index: int, content: str) -> None:
        """Rewrite a message and drop everything after it."""
        messages = self.conversation.messages
        if not 0 <= index < len(messages):
            raise IndexError(f"message index {index} out of range")
        for dropped in messages[index + 1 :]:
            self.dispatch(self.driver.forget, dropped.id)
        self.conversation.update_message(index, content)
        self.conversation.clear_messages_after(index)
        self.dispatch(self.driver.settle, messages[index].id, content)
        self.save()

    def delete_message(self, index: int) -> None:
        messages = self.conversation.messages
        if not 0 <= index < len(messages):
            raise IndexError(f"message index {index} out of range")
        self.dispatch(self.driver.forget, messages[index].id)
        self.conversation.remove_message(index)
        self.save()
