"""Tests for byte-exact trimming and context window assembly."""

from __future__ import annotations

import pytest

from mcp_relay.context_window import (
    CONTINUATION_MARKER,
    ContextWindowManager,
    byte_len,
    context_bytes,
    trim_to_bytes,
)
from mcp_relay.session import SessionState, Turn, TurnRole


def _session(*turns: tuple[TurnRole, str], summary: str = "") -> SessionState:
    session = SessionState(server_id="fs", summary=summary)
    for ts, (role, text) in enumerate(turns):
        session.append(Turn(role=role, text=text, ts=ts))
    return session


class TestTrimToBytes:
    def test_short_text_is_unchanged(self) -> None:
        assert trim_to_bytes("hello", 10) == "hello"
        assert trim_to_bytes("hello", 5) == "hello"

    def test_cut_text_carries_marker_within_limit(self) -> None:
        out = trim_to_bytes("a" * 100, 20)
        assert out.endswith(CONTINUATION_MARKER)
        assert byte_len(out) <= 20
        assert out == "a" * (20 - byte_len(CONTINUATION_MARKER)) + CONTINUATION_MARKER

    def test_never_splits_a_multibyte_character(self) -> None:
        text = "é" * 50  # two bytes each
        for limit in range(0, 40):
            out = trim_to_bytes(text, limit)
            assert byte_len(out) <= limit
            out.encode("utf-8").decode("utf-8")  # valid UTF-8

    def test_marker_dropped_when_it_does_not_fit(self) -> None:
        assert trim_to_bytes("abcdef", 2) == "ab"

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_limit(self, limit: int) -> None:
        assert trim_to_bytes("abc", limit) == ""


class TestContextWindow:
    def test_no_session_gives_empty_context(self) -> None:
        assert ContextWindowManager().build(None) == []

    def test_recent_turns_in_order_without_system_turns(self) -> None:
        session = _session(
            (TurnRole.HOST, "one"),
            (TurnRole.SYSTEM, "internal note"),
            (TurnRole.SERVER, "two"),
            (TurnRole.HOST, "three"),
        )
        parts = ContextWindowManager(context_turns=2).build(session)

        assert [(p.role, p.content) for p in parts] == [("server", "two"), ("host", "three")]

    def test_preview_preferred_over_text(self) -> None:
        session = SessionState(server_id="fs")
        session.append(Turn(role=TurnRole.SERVER, text="x" * 5000, preview="short"))

        parts = ContextWindowManager().build(session)

        assert parts[0].content == "short"

    def test_summary_comes_first_and_is_capped(self) -> None:
        session = _session((TurnRole.HOST, "hi"), summary="s" * 1000)

        parts = ContextWindowManager(budget_bytes=2048).build(session)

        assert parts[0].role == "system"
        assert byte_len(parts[0].content) <= int(2048 * 0.35)
        assert parts[1].content == "hi"

    def test_summary_then_turns_share_the_rest(self) -> None:
        # A 600-byte summary fits its share; the turns split what is left.
        turns = [(TurnRole.HOST if i % 2 == 0 else TurnRole.SERVER, "w" * 1000) for i in range(6)]
        session = _session(*turns, summary="s" * 600)

        parts = ContextWindowManager(budget_bytes=2048, context_turns=6).build(session)

        assert byte_len(parts[0].content) == 600
        assert len(parts) == 7
        assert context_bytes(parts) <= 2048
        for part in parts[1:]:
            assert byte_len(part.content) <= (2048 - 600) // 6 + 1

    def test_budget_holds_for_multibyte_content(self) -> None:
        turns = [(TurnRole.HOST, "日本語テキスト" * 200), (TurnRole.SERVER, "ü" * 3000)] * 3
        session = _session(*turns, summary="∑" * 1000)

        parts = ContextWindowManager(budget_bytes=2048, context_turns=6).build(session)

        assert context_bytes(parts) <= 2048
        assert all(p.content for p in parts)

    def test_small_turns_leave_room_for_later_ones(self) -> None:
        session = _session((TurnRole.HOST, "tiny"), (TurnRole.SERVER, "z" * 5000))

        parts = ContextWindowManager(budget_bytes=1000, context_turns=2).build(session)

        assert parts[0].content == "tiny"
        assert byte_len(parts[1].content) == 1000 - 4
