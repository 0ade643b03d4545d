"""Tests for ChatController: streaming into the driver, persistence, editing."""

import http.client

import pytest

from prometheus_chat.app.chat_controller import ChatController
from prometheus_chat.core.render_driver import RenderDriver, Settled
from prometheus_chat.core.segments import Bold, Text
from prometheus_chat.io.conversations import ChatMessage, Conversation, ConversationError, ConversationManager
from prometheus_chat.pipeline.ollama_client import OllamaError
from tests.conftest import FakeClient


@pytest.fixture
def manager(tmp_path):
    return ConversationManager(tmp_path / "convs")


def _controller(client, manager=None, conversation=None, **kwargs) -> ChatController:
    return ChatController(client, RenderDriver(), manager, conversation, model="llama3", **kwargs)


# ─── Sending ─────────────────────────────────────────────────────────────────


class TestSend:
    def test_reply_streams_into_driver_and_settles(self, manager):
        controller = _controller(FakeClient(["Hello ", "**world**"]), manager)
        reply = controller.send("hi")
        assert reply.content == "Hello **world**"
        assert isinstance(controller.driver.state(reply.id), Settled)
        assert controller.driver.render(reply.id) == (Text("Hello "), Bold("world"))
        assert controller.streaming_message_id is None

    def test_history_sent_to_backend(self):
        client = FakeClient(["one"], ["two"])
        controller = _controller(client)
        controller.send("first")
        controller.send("second")
        model, history = client.calls[1]
        assert model == "llama3"
        assert history == [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "one"},
            {"role": "user", "content": "second"},
        ]

    def test_history_limited_to_max(self):
        client = FakeClient(["one"], ["two"])
        controller = _controller(client, max_history=1)
        controller.send("first")
        controller.send("second")
        assert client.calls[1][1] == [{"role": "user", "content": "second"}]

    def test_listener_sees_streaming_then_settled(self):
        controller = _controller(FakeClient(["a", "b"]))
        events = []
        controller.driver.subscribe(lambda mid, segs, streaming: events.append((segs, streaming)))
        controller.send("hi")
        assert events[-3:] == [
            ((Text("a"),), True),
            ((Text("ab"),), True),
            ((Text("ab"),), False),
        ]

    def test_exchange_is_saved(self, manager):
        controller = _controller(FakeClient(["yes"]), manager)
        controller.send("question")
        saved = manager.load_conversation(controller.conversation.id)
        assert [(m.role, m.content) for m in saved.messages] == [("user", "question"), ("assistant", "yes")]

    def test_dispatch_wraps_driver_calls(self):
        calls = []

        def dispatch(fn, *args):
            calls.append(fn.__name__)
            return fn(*args)

        controller = _controller(FakeClient(["x"]), dispatch=dispatch)
        controller.send("hi")
        assert calls == ["settle", "begin_stream", "on_token", "on_stream_complete"]


class TestStreamFailures:
    def test_partial_reply_kept_on_error(self, manager):
        client = FakeClient((["par", "tial"], OllamaError("connection dropped", "unreachable")))
        controller = _controller(client, manager)
        with pytest.raises(OllamaError):
            controller.send("hi")
        messages = controller.conversation.messages
        assert [(m.role, m.content) for m in messages] == [("user", "hi"), ("assistant", "partial")]
        assert not controller.driver.is_streaming(messages[1].id)
        assert manager.load_conversation(controller.conversation.id).messages[1].content == "partial"

    def test_empty_reply_on_error_is_dropped(self):
        client = FakeClient(([], OllamaError("model missing", "model_unavailable")))
        controller = _controller(client)
        with pytest.raises(OllamaError):
            controller.send("hi")
        (user,) = controller.conversation.messages
        assert controller.driver.message_ids() == [user.id]
        assert controller.streaming_message_id is None

    def test_unexpected_error_still_settles_reply(self, manager):
        client = FakeClient((["partial "], http.client.IncompleteRead(b"", 10)))
        controller = _controller(client, manager)
        with pytest.raises(http.client.IncompleteRead):
            controller.send("hi")
        assert controller.streaming_message_id is None
        messages = controller.conversation.messages
        assert [(m.role, m.content) for m in messages] == [("user", "hi"), ("assistant", "partial ")]
        assert [controller.driver.is_streaming(m.id) for m in messages] == [False, False]
        assert manager.load_conversation(controller.conversation.id).messages[1].content == "partial "

    def test_save_failure_does_not_leave_stream_open(self, manager, monkeypatch):
        def fail(conversation):
            raise ConversationError("disk full")

        monkeypatch.setattr(manager, "save_conversation", fail)
        controller = _controller(FakeClient(["done"]), manager)
        with pytest.raises(ConversationError, match="disk full"):
            controller.send("hi")
        assert controller.streaming_message_id is None
        reply = controller.conversation.messages[-1]
        assert reply.content == "done"
        assert isinstance(controller.driver.state(reply.id), Settled)

    def test_cancel_stops_at_next_token(self):
        controller = _controller(FakeClient(["first", "second", "third"]))
        controller.driver.subscribe(lambda mid, segs, streaming: streaming and segs and controller.cancel())
        reply = controller.send("hi")
        assert reply.content == "first"
        assert not controller.driver.is_streaming(reply.id)


# ─── Conversation lifecycle ──────────────────────────────────────────────────


class TestLifecycle:
    def test_loaded_messages_are_settled(self):
        conv = Conversation(name="old", messages=[ChatMessage("user", "*hi*"), ChatMessage("assistant", "yo")])
        controller = _controller(FakeClient(), conversation=conv)
        for message in conv.messages:
            assert isinstance(controller.driver.state(message.id), Settled)

    def test_new_conversation_clears_driver(self):
        controller = _controller(FakeClient(["reply"]))
        controller.send("hi")
        old_id = controller.conversation.id
        conv = controller.new_conversation()
        assert conv.id != old_id
        assert controller.driver.message_ids() == []

    def test_empty_conversation_not_saved(self, manager):
        _controller(FakeClient(), manager).save()
        assert manager.list_conversations() == []

    def test_no_manager_means_no_save(self, manager):
        controller = _controller(FakeClient(["reply"]))
        controller.send("hi")
        assert manager.list_conversations() == []


# ─── Editing ─────────────────────────────────────────────────────────────────


class TestEditing:
    def test_regenerate_replaces_last_reply(self):
        client = FakeClient(["first"], ["second"])
        controller = _controller(client)
        old = controller.send("hi")
        new = controller.regenerate()
        assert new.content == "second"
        assert [m.content for m in controller.conversation.messages] == ["hi", "second"]
        assert old.id not in controller.driver.message_ids()
        assert client.calls[1][1] == [{"role": "user", "content": "hi"}]

    def test_regenerate_after_failed_reply(self):
        client = FakeClient(([], OllamaError("down", "unreachable")), ["now it works"])
        controller = _controller(client)
        with pytest.raises(OllamaError):
            controller.send("hi")
        assert controller.regenerate().content == "now it works"

    def test_regenerate_empty_conversation(self):
        assert _controller(FakeClient()).regenerate() is None

    def test_edit_drops_later_messages(self):
        controller = _controller(FakeClient(["a1"], ["a2"]))
        controller.send("q1")
        controller.send("q2")
        dropped = [m.id for m in controller.conversation.messages[1:]]
        controller.edit_message(0, "**q1 edited**")
        (first,) = controller.conversation.messages
        assert first.content == "**q1 edited**"
        assert controller.driver.render(first.id) == (Bold("q1 edited"),)
        assert not set(dropped) & set(controller.driver.message_ids())

    def test_edit_out_of_range(self):
        with pytest.raises(IndexError):
            _controller(FakeClient()).edit_message(3, "x")

    def test_delete_message(self):
        controller = _controller(FakeClient(["a"]))
        controller.send("q")
        user_id = controller.conversation.messages[0].id
        controller.delete_message(0)
        assert [m.content for m in controller.conversation.messages] == ["a"]
        assert user_id not in controller.driver.message_ids()
