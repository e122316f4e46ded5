"""Tests for host-side chat memory."""

from __future__ import annotations

from mcp_relay.conversation import CHAT_MAX_MESSAGES, ChatMemory
from mcp_relay.llm import ChatRole


def test_add_exchange_appends_user_then_assistant():
    mem = ChatMemory()
    mem.add_exchange("Hello", "Hi!")
    assert [t.role for t in mem.turns] == [ChatRole.USER, ChatRole.ASSISTANT]
    assert mem.turns[0].content == "Hello"
    assert mem.turns[1].content == "Hi!"


def test_to_messages_preserves_order():
    mem = ChatMemory()
    mem.add_exchange("q1", "a1")
    mem.add_exchange("q2", "a2")
    messages = mem.to_messages()
    assert [m.content for m in messages] == ["q1", "a1", "q2", "a2"]
    assert messages[-1].role == ChatRole.ASSISTANT


def test_trim_by_message_count():
    mem = ChatMemory()
    for i in range(10):
        mem.add_exchange(f"q{i}", f"a{i}")
    assert len(mem.turns) == CHAT_MAX_MESSAGES
    assert mem.turns[0].content == "q4"


def test_trim_by_chars_drops_oldest_pairs():
    mem = ChatMemory(max_messages=100, max_chars=100)
    mem.add_exchange("a" * 30, "b" * 30)
    mem.add_exchange("c" * 30, "d" * 30)
    assert [t.content[0] for t in mem.turns] == ["c", "d"]


def test_last_pair_kept_even_when_oversized():
    mem = ChatMemory(max_chars=10)
    mem.add_exchange("x" * 50, "y" * 50)
    assert len(mem.turns) == 2


def test_clear_and_summary():
    mem = ChatMemory(max_messages=4, max_chars=1000)
    mem.add_exchange("abc", "de")
    assert mem.summary() == {
        "message_count": 2,
        "max_messages": 4,
        "chars": 5,
        "max_chars": 1000,
    }
    mem.clear()
    assert mem.turns == []
