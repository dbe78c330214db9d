"""Shared test helpers and stub classes.

Streams in these tests are scripted rather than served over HTTP; import
from here instead of duplicating the fakes in individual test files.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator, Iterable

from zundachat.ai.transport import CancelToken


def sse_frame(content: str | None = None, *, role: str | None = None) -> str:
    delta: dict[str, Any] = {}
    if role is not None:
        delta["role"] = role
    if content is not None:
        delta["content"] = content
    return "data: " + json.dumps({"choices": [{"delta": delta, "index": 0}]}) + "\n\n"


def sse_body(*deltas: str, done: bool = True) -> bytes:
    body = sse_frame(role="assistant") + "".join(sse_frame(delta) for delta in deltas)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


def sse_chunks(*deltas: str) -> list[bytes]:
    """One chunk per delta, followed by a ``[DONE]`` chunk."""

    return [sse_frame(delta).encode("utf-8") for delta in deltas] + [b"data: [DONE]\n\n"]


class ScriptedTransport:
    """Stands in for :class:`StreamingTransport`, replaying queued responses.

    Each queued entry is either a list of raw chunks or an exception
    (usually a ``TransportError``) raised before any chunk is produced. An
    empty queue answers with a stream that carries no content.
    """

    def __init__(self, *responses: Iterable[bytes] | Exception) -> None:
        self._responses: list[Any] = list(responses)
        self.payloads: list[dict[str, Any]] = []
        self.api_keys: list[str] = []
        self.closed = False

    def queue(self, response: Iterable[bytes] | Exception) -> None:
        self._responses.append(response)

    async def stream(
        self, payload: str, api_key: str, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[bytes]:
        self.payloads.append(json.loads(payload))
        self.api_keys.append(api_key)
        response = self._responses.pop(0) if self._responses else [sse_body()]
        if isinstance(response, Exception):
            raise response
        for chunk in response:
            if cancel_token is not None and cancel_token.cancelled:
                return
            yield chunk

    async def aclose(self) -> None:
        self.closed = True
