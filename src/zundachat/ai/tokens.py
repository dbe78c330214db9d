"""Token estimation and context-window truncation."""

from __future__ import annotations

import logging
import math
from typing import Protocol, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

# Average bytes per token for English prose (GPT-style tokenization)
BYTES_PER_TOKEN = 4


class TokenCounterProtocol(Protocol):
    """Protocol describing tokenizer implementations."""

    def count(self, text: str) -> int:
        """Return the token count for *text*."""
        ...


class SupportsContent(Protocol):
    role: str
    content: str


MessageT = TypeVar("MessageT", bound=SupportsContent)


class ApproxByteCounter:
    """Deterministic counter that estimates tokens via UTF-8 byte length.

    The estimate grows monotonically with the text, which keeps truncation
    a fixed point: truncating an already truncated history is a no-op.
    """

    def __init__(self, *, charset: str = "utf-8", bytes_per_token: int = BYTES_PER_TOKEN) -> None:
        self._charset = charset
        self._bytes_per_token = max(1, int(bytes_per_token))

    def count(self, text: str) -> int:
        if not text:
            return 0
        data = text.encode(self._charset, errors="ignore")
        return max(1, math.ceil(len(data) / self._bytes_per_token))


_DEFAULT_COUNTER = ApproxByteCounter()


def estimate_tokens(text: str, *, counter: TokenCounterProtocol | None = None) -> int:
    """Estimate the number of tokens in ``text`` (0 for empty text)."""

    return (counter or _DEFAULT_COUNTER).count(text)


def truncate_messages(
    messages: Sequence[MessageT],
    context_limit: int,
    reserved_for_completion: int | None = 0,
    *,
    counter: TokenCounterProtocol | None = None,
    keep_leading_system: bool = True,
) -> list[MessageT]:
    """Return the most recent messages that fit the context budget.

    The budget is ``context_limit - reserved_for_completion``; a reservation
    of zero (or ``None``) leaves the whole context window available. Messages
    are walked from newest to oldest and kept while the running total fits.
    A leading system message is protected and always kept when
    ``keep_leading_system`` is set. The newest message is always kept, even
    when it alone exceeds the budget, so a non-empty history never
    truncates to nothing.
    """

    if not messages:
        return []
    active_counter = counter or _DEFAULT_COUNTER
    reserved = max(0, int(reserved_for_completion or 0))
    budget = context_limit - reserved if reserved else context_limit

    head: list[MessageT] = []
    body = list(messages)
    if keep_leading_system and len(body) > 1 and body[0].role == "system":
        head = [body[0]]
        body = body[1:]
        budget -= active_counter.count(head[0].content)

    kept: list[MessageT] = []
    used = 0
    for message in reversed(body):
        cost = active_counter.count(message.content)
        if used + cost > budget:
            if not kept:
                kept.append(message)
            break
        kept.append(message)
        used += cost
    kept.reverse()

    dropped = len(body) - len(kept)
    if dropped:
        LOGGER.debug(
            "Truncated %s message(s) to fit %s token(s) (limit=%s, reserved=%s)",
            dropped,
            budget,
            context_limit,
            reserved,
        )
    return head + kept


__all__ = [
    "ApproxByteCounter",
    "BYTES_PER_TOKEN",
    "TokenCounterProtocol",
    "estimate_tokens",
    "truncate_messages",
]
