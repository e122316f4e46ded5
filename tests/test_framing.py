"""Tests for newline-delimited JSON-RPC framing."""

from __future__ import annotations

import json

import pytest

from mcp_relay.errors import MalformedFrame
from mcp_relay.framing import LineDecoder, make_notification, make_request, parse_line


class TestMessages:
    def test_request_line_is_single_newline_terminated_object(self) -> None:
        line = make_request(7, "tools/call", {"name": "echo", "arguments": {}}).to_line()
        assert line.endswith(b"\n")
        assert line.count(b"\n") == 1
        assert json.loads(line) == {
            "jsonrpc": "2.0",
            "id": 7,
            "method": "tools/call",
            "params": {"name": "echo", "arguments": {}},
        }

    def test_request_without_params(self) -> None:
        assert json.loads(make_request(1, "tools/list", None).to_line()) == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/list",
        }

    def test_notification_has_no_id(self) -> None:
        payload = json.loads(make_notification("initialized", {}).to_line())
        assert "id" not in payload
        assert payload["method"] == "initialized"

    def test_parse_response(self) -> None:
        msg = parse_line('{"jsonrpc":"2.0","id":3,"result":{"tools":[]}}')
        assert msg.is_response
        assert msg.id == 3
        assert msg.result == {"tools": []}

    def test_parse_null_result_is_still_a_response(self) -> None:
        assert parse_line('{"jsonrpc":"2.0","id":3,"result":null}').is_response

    def test_server_request_is_not_a_response(self) -> None:
        msg = parse_line('{"jsonrpc":"2.0","id":9,"method":"roots/list"}')
        assert not msg.is_response

    @pytest.mark.parametrize("line", ["not json", "[1,2]", '"text"', '{"id": {"x": 1}}'])
    def test_malformed_lines(self, line: str) -> None:
        with pytest.raises(MalformedFrame):
            parse_line(line)


class TestLineDecoder:
    def test_partial_lines_are_buffered(self) -> None:
        decoder = LineDecoder()
        assert decoder.feed(b'{"a":') == []
        assert decoder.pending_bytes == 5
        assert decoder.feed(b"1}\n") == ['{"a":1}']
        assert decoder.pending_bytes == 0

    def test_several_lines_in_one_chunk(self) -> None:
        decoder = LineDecoder()
        assert decoder.feed(b"one\ntwo\n\n  \nthree") == ["one", "two"]
        assert decoder.feed(b"\n") == ["three"]

    def test_multibyte_character_split_across_chunks(self) -> None:
        decoder = LineDecoder()
        data = "日本語\n".encode()
        out: list[str] = []
        for i in range(len(data)):
            out.extend(decoder.feed(data[i : i + 1]))
        assert out == ["日本語"]

    def test_crlf_is_stripped(self) -> None:
        assert LineDecoder().feed(b"hello\r\n") == ["hello"]

    def test_reset_discards_partial_data(self) -> None:
        decoder = LineDecoder()
        decoder.feed(b"half a line")
        decoder.reset()
        assert decoder.pending_bytes == 0
        assert decoder.feed(b"fresh\n") == ["fresh"]
