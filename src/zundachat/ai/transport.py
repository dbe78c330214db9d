"""Streaming HTTP transport for the chat completion endpoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

import httpx

from .errors import TransportError

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
COMPLETIONS_PATH = "/chat/completions"


class CancelToken:
    """Cooperative cancellation signal shared between a caller and a stream.

    Cancelling is idempotent. A cancelled token stays cancelled; create a
    fresh token for every request.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancelToken(cancelled={self.cancelled})"


class StreamingTransport:
    """Opens one streaming POST per request and yields raw body chunks.

    ``stream`` is an async generator. A non-success status raises
    :class:`TransportError` carrying the buffered error body before any
    chunk is produced; connection failures raise it with status 0. When
    the cancel token fires the connection is torn
    down and the generator simply ends; callers distinguish a cancelled end
    from a clean one through ``cancel_token.cancelled``.
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float | None = 90.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + COMPLETIONS_PATH
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    async def stream(
        self,
        payload: str | bytes,
        api_key: str,
        cancel_token: CancelToken | None = None,
    ) -> AsyncIterator[bytes]:
        if cancel_token is not None and cancel_token.cancelled:
            LOGGER.debug("Request cancelled before the connection was opened")
            return
        body = payload.encode("utf-8") if isinstance(payload, str) else payload
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        LOGGER.debug("Opening completion stream to %s (%s bytes)", self._url, len(body))
        try:
            async with self._client.stream("POST", self._url, content=body, headers=headers) as response:
                if response.status_code != 200:
                    error_body = (await response.aread()).decode("utf-8", errors="replace")
                    LOGGER.warning("Completion request failed with HTTP %s", response.status_code)
                    raise TransportError(status_code=response.status_code, body=error_body)

                chunks = response.aiter_bytes()
                while True:
                    chunk = await _next_chunk(chunks, cancel_token)
                    if chunk is None:
                        break
                    if cancel_token is not None and cancel_token.cancelled:
                        break
                    yield chunk
        except httpx.HTTPError as exc:
            LOGGER.warning("Completion request failed: %s", exc)
            raise TransportError(status_code=0, message=f"Connection failed: {exc}") from exc

        if cancel_token is not None and cancel_token.cancelled:
            LOGGER.debug("Completion stream cancelled; connection closed")
        else:
            LOGGER.debug("Completion stream finished")

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this transport created it."""

        if self._owns_client:
            await self._client.aclose()


async def _next_chunk(
    chunks: AsyncIterator[bytes], cancel_token: CancelToken | None
) -> bytes | None:
    """Await the next body chunk, giving up as soon as ``cancel_token`` fires."""

    if cancel_token is None:
        try:
            return await chunks.__anext__()
        except StopAsyncIteration:
            return None

    read = asyncio.ensure_future(chunks.__anext__())
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except BaseException:
        read.cancel()
        raise
    finally:
        waiter.cancel()

    if read in done:
        try:
            return read.result()
        except StopAsyncIteration:
            return None

    read.cancel()
    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
        await read
    return None


__all__ = ["COMPLETIONS_PATH", "CancelToken", "DEFAULT_BASE_URL", "StreamingTransport"]
