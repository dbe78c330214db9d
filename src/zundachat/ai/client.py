"""Streaming chat completion client."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Sequence

from openai import APIError, APIStatusError, AsyncOpenAI

from ..chat.message_model import Message
from .errors import MissingCredentialError
from .frames import FrameParser
from .models import get_model_info
from .prompts import PERSONA_PROMPT, is_system_directive
from .tokens import ApproxByteCounter, TokenCounterProtocol, truncate_messages
from .transport import DEFAULT_BASE_URL, CancelToken, StreamingTransport

LOGGER = logging.getLogger(__name__)

OpenAIFactory = Callable[[str], AsyncOpenAI]


@dataclass(slots=True)
class SamplingParams:
    """Recognised sampling options for a chat completion request.

    ``max_tokens`` of zero means no explicit limit and is left out of the
    request. ``logit_bias`` is JSON text as entered by the user.
    """

    model: str = "gpt-3.5-turbo"
    temperature: float = 1.0
    top_p: float = 1.0
    n: int = 1
    stop: str | List[str] | None = None
    max_tokens: int = 0
    presence_penalty: float = 0.0
    frequency_penalty: float = 0.0
    logit_bias: str = ""

    @classmethod
    def from_settings(cls, settings: Any) -> "SamplingParams":
        return cls(
            model=settings.model,
            temperature=settings.temperature,
            top_p=settings.top_p,
            n=settings.n,
            stop=settings.stop or None,
            max_tokens=settings.max_tokens,
            presence_penalty=settings.presence_penalty,
            frequency_penalty=settings.frequency_penalty,
            logit_bias=settings.logit_bias,
        )

    def parsed_logit_bias(self) -> Dict[str, Any]:
        text = (self.logit_bias or "").strip()
        if not text:
            return {}
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring logit_bias that is not valid JSON: %r", text)
            return {}
        if not isinstance(parsed, dict):
            LOGGER.warning("Ignoring logit_bias that is not a JSON object: %r", text)
            return {}
        return parsed

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "n": self.n,
            "presence_penalty": self.presence_penalty,
            "frequency_penalty": self.frequency_penalty,
            "logit_bias": self.parsed_logit_bias(),
        }
        if self.stop:
            payload["stop"] = self.stop
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass(frozen=True, slots=True)
class CompletionUsage:
    """Estimated token usage reported when a stream ends."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    cancelled: bool = False


class CompletionStream:
    """Async iterator over content deltas of a single completion request.

    The connection opens on first iteration. After the iterator is
    exhausted :attr:`usage` holds the estimated usage; a cancelled stream
    reports zero usage with ``cancelled`` set. A stream can be consumed
    only once.
    """

    def __init__(
        self,
        *,
        transport: StreamingTransport,
        payload: str,
        api_key: str,
        submitted: Sequence[Message],
        counter: TokenCounterProtocol,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._transport = transport
        self._payload = payload
        self._api_key = api_key
        self._submitted = list(submitted)
        # Snapshot now: placeholders keep growing in place while the reply streams.
        self._prompt_text = "\n".join(m.content for m in self._submitted if not m.loading)
        self._pending_text = "\n".join(m.content for m in self._submitted if m.loading)
        self._counter = counter
        self._cancel_token = cancel_token
        self._buffer: list[str] = []
        self._usage: CompletionUsage | None = None
        self._iterator: AsyncIterator[str] | None = None

    @property
    def submitted(self) -> list[Message]:
        """Messages actually sent, after truncation and persona injection."""

        return list(self._submitted)

    @property
    def payload(self) -> str:
        return self._payload

    @property
    def text(self) -> str:
        """Content received so far."""

        return "".join(self._buffer)

    @property
    def usage(self) -> CompletionUsage | None:
        return self._usage

    @property
    def cancelled(self) -> bool:
        return self._cancel_token is not None and self._cancel_token.cancelled

    def __aiter__(self) -> "CompletionStream":
        self._start()
        return self

    async def __anext__(self) -> str:
        iterator = self._iterator if self._iterator is not None else self._start()
        return await iterator.__anext__()

    def _start(self) -> AsyncIterator[str]:
        if self._iterator is not None:
            raise RuntimeError("CompletionStream can only be consumed once")
        self._iterator = self._run()
        return self._iterator

    async def aclose(self) -> None:
        """Close the connection early, e.g. when the consumer stops reading."""

        iterator = self._iterator
        if iterator is not None:
            await iterator.aclose()  # type: ignore[attr-defined]

    async def collect(self) -> str:
        """Consume the whole stream and return the concatenated text."""

        async for _delta in self:
            pass
        return self.text

    async def _run(self) -> AsyncIterator[str]:
        parser = FrameParser()
        async for chunk in self._transport.stream(self._payload, self._api_key, self._cancel_token):
            for delta in parser.feed(chunk):
                if self.cancelled:
                    break
                self._buffer.append(delta)
                yield delta
            if parser.done or self.cancelled:
                break

        if self.cancelled:
            LOGGER.debug("Completion cancelled after %s delta(s)", len(self._buffer))
            self._usage = CompletionUsage(cancelled=True)
            return
        self._usage = self._estimate_usage()
        LOGGER.debug(
            "Completion finished: prompt_tokens=%s completion_tokens=%s",
            self._usage.prompt_tokens,
            self._usage.completion_tokens,
        )

    def _estimate_usage(self) -> CompletionUsage:
        # Leftover text of pending placeholders is billed as completion.
        return CompletionUsage(
            prompt_tokens=self._counter.count(self._prompt_text),
            completion_tokens=self._counter.count(self._pending_text + self.text),
        )


class CompletionClient:
    """Builds completion requests and streams them through the transport."""

    def __init__(
        self,
        transport: StreamingTransport | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float | None = 90.0,
        counter: TokenCounterProtocol | None = None,
        openai_factory: OpenAIFactory | None = None,
        debug_logging: bool = False,
    ) -> None:
        self._transport = transport or StreamingTransport(base_url=base_url, timeout=request_timeout)
        self._counter = counter or ApproxByteCounter()
        self._openai_factory = openai_factory or default_openai_factory(base_url, request_timeout)
        self._debug_logging = debug_logging

    @property
    def counter(self) -> TokenCounterProtocol:
        return self._counter

    def stream_completion(
        self,
        messages: Sequence[Message],
        params: SamplingParams,
        api_key: str | None,
        cancel_token: CancelToken | None = None,
    ) -> CompletionStream:
        """Prepare a streamed completion over ``messages``.

        Raises :class:`MissingCredentialError` without an API key and
        :class:`~zundachat.ai.errors.ModelNotFoundError` for an unknown
        model. Transport failures surface while iterating the stream.
        """

        if not api_key:
            raise MissingCredentialError()
        model_info = get_model_info(params.model)
        submitted = truncate_messages(
            messages, model_info.max_tokens, params.max_tokens, counter=self._counter
        )
        submitted = with_persona(submitted)
        payload = self.build_payload(submitted, params)
        return CompletionStream(
            transport=self._transport,
            payload=payload,
            api_key=api_key,
            submitted=submitted,
            counter=self._counter,
            cancel_token=cancel_token,
        )

    def build_payload(self, messages: Sequence[Message], params: SamplingParams) -> str:
        body: Dict[str, Any] = {
            "messages": [message.to_payload() for message in messages],
            "stream": True,
            **params.to_payload(),
        }
        LOGGER.debug(
            "Prepared completion request for %s with %s message(s)", params.model, len(messages)
        )
        if self._debug_logging:
            LOGGER.debug("Completion payload:\n%s", json.dumps(body, ensure_ascii=False, indent=2))
        return json.dumps(body, ensure_ascii=False)

    async def test_key(self, api_key: str) -> bool:
        """Return True when ``api_key`` can list models."""

        try:
            await self._list_model_ids(api_key)
        except APIStatusError as exc:
            if exc.status_code == 401:
                LOGGER.info("API key rejected (HTTP 401)")
            else:
                LOGGER.warning("Key validation failed with HTTP %s: %s", exc.status_code, exc)
            return False
        except APIError as exc:
            LOGGER.warning("Key validation failed: %s", exc)
            return False
        return True

    async def fetch_models(self, api_key: str) -> list[str]:
        """Return the model ids visible to ``api_key`` or ``[]`` on failure."""

        try:
            return await self._list_model_ids(api_key)
        except APIError as exc:
            LOGGER.warning("Unable to fetch models: %s", exc)
            return []

    async def _list_model_ids(self, api_key: str) -> list[str]:
        client = self._openai_factory(api_key)
        try:
            response = await client.models.list()
        finally:
            await client.close()
        return [item.id for item in response.data if getattr(item, "id", None)]

    async def aclose(self) -> None:
        await self._transport.aclose()


def with_persona(messages: Sequence[Message]) -> list[Message]:
    """Prepend the persona prompt unless the request already opens with a directive."""

    if messages:
        first = messages[0].content
        if first == PERSONA_PROMPT or is_system_directive(first):
            return list(messages)
    return [Message(role="system", content=PERSONA_PROMPT), *messages]


def default_openai_factory(base_url: str, timeout: float | None) -> OpenAIFactory:
    def factory(api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    return factory


__all__ = [
    "CompletionClient",
    "CompletionStream",
    "CompletionUsage",
    "OpenAIFactory",
    "default_openai_factory",
    "SamplingParams",
    "with_persona",
]
