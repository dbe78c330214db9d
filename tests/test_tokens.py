"""Tests for token estimation and history truncation."""

from __future__ import annotations

from zundachat.ai.tokens import ApproxByteCounter, estimate_tokens, truncate_messages
from zundachat.chat.message_model import Message


def _msg(content: str, role: str = "user") -> Message:
    return Message(role=role, content=content)  # type: ignore[arg-type]


def test_approx_counter_rounds_bytes_up() -> None:
    counter = ApproxByteCounter()

    assert counter.count("") == 0
    assert counter.count("a") == 1
    assert counter.count("abcd") == 1
    assert counter.count("abcde") == 2
    # Multi-byte characters count by their encoded size.
    assert counter.count("ずんだ") == 3
    assert estimate_tokens("abcdefgh") == 2


def test_truncation_keeps_newest_messages_within_budget() -> None:
    messages = [_msg("a" * 40), _msg("b" * 40), _msg("c" * 40)]

    kept = truncate_messages(messages, context_limit=25)

    assert kept == messages[1:]


def test_reservation_shrinks_the_budget() -> None:
    messages = [_msg("a" * 40), _msg("b" * 40), _msg("c" * 40)]

    assert truncate_messages(messages, 30, 0) == messages
    assert truncate_messages(messages, 30, 15) == messages[2:]


def test_truncation_never_returns_empty_for_non_empty_history() -> None:
    oversized = _msg("x" * 4000)

    kept = truncate_messages([_msg("older"), oversized], context_limit=10)

    assert kept == [oversized]
    assert truncate_messages([], 10) == []


def test_truncation_is_idempotent() -> None:
    messages = [_msg("q" * 30), _msg("r" * 50), _msg("s" * 20), _msg("t" * 10)]

    once = truncate_messages(messages, 20, 2)
    twice = truncate_messages(once, 20, 2)

    assert twice == once


def test_truncation_preserves_order_and_identity() -> None:
    messages = [_msg(f"message {index}") for index in range(6)]

    kept = truncate_messages(messages, 10)

    assert [m.id for m in kept] == [m.id for m in messages[-len(kept):]]
    assert all(a is b for a, b in zip(kept, messages[-len(kept):]))


def test_leading_system_message_is_protected() -> None:
    system = _msg("persona " * 4, role="system")
    messages = [system, _msg("a" * 40), _msg("b" * 40)]

    kept = truncate_messages(messages, 20)

    assert kept == [system, messages[2]]

    unprotected = truncate_messages(messages, 20, keep_leading_system=False)
    assert unprotected == messages[1:]
