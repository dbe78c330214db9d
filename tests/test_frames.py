"""Tests for stream frame parsing."""

from __future__ import annotations

from tests.helpers import sse_body, sse_frame
from zundachat.ai.frames import FrameParser, extract_delta


def test_parses_deltas_in_order_and_stops_at_done() -> None:
    parser = FrameParser()
    chunk = (sse_frame("A") + sse_frame("B") + "data: [DONE]\n\n" + sse_frame("C")).encode()

    assert parser.feed(chunk) == ["A", "B"]
    assert parser.done is True
    assert parser.feed(sse_frame("D").encode()) == []


def test_malformed_frame_is_skipped_and_parsing_continues() -> None:
    parser = FrameParser()

    assert parser.feed(b"data: {bad json") == []
    assert parser.feed(sse_frame("X").encode()) == ["X"]
    assert parser.skipped_frames == 1
    assert parser.done is False


def test_malformed_frame_between_valid_frames_in_one_chunk() -> None:
    parser = FrameParser()
    chunk = sse_frame("one") + "data: {oops}\n\n" + sse_frame("two")

    assert parser.feed(chunk) == ["one", "two"]
    assert parser.skipped_frames == 1


def test_role_and_finish_frames_produce_no_delta() -> None:
    parser = FrameParser()
    finish = 'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n'

    assert parser.feed(sse_frame(role="assistant") + finish) == []


def test_full_body_yields_all_content() -> None:
    assert FrameParser().feed(sse_body("Hel", "lo", "!")) == ["Hel", "lo", "!"]


def test_extract_delta_rejects_unexpected_shapes() -> None:
    assert extract_delta({"choices": [{"delta": {"content": "hi"}}]}) == "hi"
    assert extract_delta({"choices": []}) is None
    assert extract_delta({"choices": [{"delta": {"content": None}}]}) is None
    assert extract_delta(["not", "a", "dict"]) is None
    assert extract_delta({"choices": [{"delta": {"content": ""}}]}) == ""
