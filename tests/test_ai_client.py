"""Tests for the streaming completion client."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from openai import APIConnectionError, AuthenticationError

from tests.helpers import ScriptedTransport, sse_body, sse_chunks
from zundachat.ai.client import CompletionClient, SamplingParams, with_persona
from zundachat.ai.errors import MissingCredentialError, ModelNotFoundError, TransportError
from zundachat.ai.prompts import PERSONA_PROMPT, expression_prompt
from zundachat.ai.tokens import ApproxByteCounter
from zundachat.ai.transport import CancelToken
from zundachat.chat.message_model import Message

ALLOWED_KEYS = {
    "model",
    "messages",
    "stream",
    "temperature",
    "top_p",
    "n",
    "stop",
    "max_tokens",
    "presence_penalty",
    "frequency_penalty",
    "logit_bias",
}


def _client(transport: ScriptedTransport, **kwargs: Any) -> CompletionClient:
    return CompletionClient(transport, **kwargs)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_stream_yields_deltas_and_estimates_usage() -> None:
    transport = ScriptedTransport([sse_body("Hello", " world")])
    client = _client(transport)
    messages = [Message(role="user", content="Hi there")]

    stream = client.stream_completion(messages, SamplingParams(), "sk-test")
    deltas = [delta async for delta in stream]

    assert deltas == ["Hello", " world"]
    assert stream.text == "Hello world"
    counter = ApproxByteCounter()
    assert stream.usage is not None
    assert stream.usage.cancelled is False
    assert stream.usage.prompt_tokens == counter.count(PERSONA_PROMPT + "\nHi there")
    assert stream.usage.completion_tokens == counter.count("Hello world")
    assert transport.api_keys == ["sk-test"]


@pytest.mark.asyncio
async def test_pending_placeholder_counts_as_completion() -> None:
    transport = ScriptedTransport([sse_body("abcd")])
    client = _client(transport)
    messages = [
        Message(role="user", content="Hi there"),
        Message(role="assistant", content="", loading=True),
    ]

    stream = client.stream_completion(messages, SamplingParams(), "sk-test")
    await stream.collect()

    assert stream.usage is not None
    assert stream.usage.completion_tokens == ApproxByteCounter().count("abcd")
    assert transport.payloads[0]["messages"][-1] == {"role": "assistant", "content": ""}


@pytest.mark.asyncio
async def test_placeholder_growing_in_place_is_not_billed_twice() -> None:
    transport = ScriptedTransport([sse_body("abcd", "efgh")])
    client = _client(transport)
    placeholder = Message(role="assistant", content="", loading=True)
    messages = [Message(role="user", content="Hi there"), placeholder]

    stream = client.stream_completion(messages, SamplingParams(), "sk-test")
    async for delta in stream:
        placeholder.content += delta

    assert stream.usage is not None
    assert stream.usage.completion_tokens == ApproxByteCounter().count("abcdefgh")
    assert stream.usage.prompt_tokens == ApproxByteCounter().count(PERSONA_PROMPT + "\nHi there")


@pytest.mark.asyncio
async def test_anext_starts_the_stream_without_aiter() -> None:
    client = _client(ScriptedTransport([sse_body("one", "two")]))
    stream = client.stream_completion([Message(role="user", content="Hi")], SamplingParams(), "sk-test")

    assert await stream.__anext__() == "one"
    assert await stream.__anext__() == "two"
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
    with pytest.raises(RuntimeError):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_payload_contains_only_recognised_fields() -> None:
    transport = ScriptedTransport()
    client = _client(transport)
    params = SamplingParams(
        model="gpt-4",
        temperature=0.5,
        stop="END",
        max_tokens=64,
        logit_bias='{"50256": -100}',
    )

    await client.stream_completion([Message(role="user", content="Hi")], params, "sk-test").collect()

    payload = transport.payloads[0]
    assert set(payload) <= ALLOWED_KEYS
    assert payload["stream"] is True
    assert payload["model"] == "gpt-4"
    assert payload["temperature"] == 0.5
    assert payload["stop"] == "END"
    assert payload["max_tokens"] == 64
    assert payload["logit_bias"] == {"50256": -100}


def test_zero_max_tokens_and_empty_stop_are_omitted() -> None:
    payload = SamplingParams(max_tokens=0, stop=None).to_payload()

    assert "max_tokens" not in payload
    assert "stop" not in payload
    assert payload["logit_bias"] == {}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", "  "])
def test_invalid_logit_bias_is_ignored(raw: str, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        assert SamplingParams(logit_bias=raw).parsed_logit_bias() == {}


@pytest.mark.asyncio
async def test_persona_is_injected_exactly_once() -> None:
    transport = ScriptedTransport()
    client = _client(transport)
    history = [Message(role="user", content="Hi")]

    first = client.stream_completion(history, SamplingParams(), "sk-test")
    again = client.stream_completion(first.submitted, SamplingParams(), "sk-test")
    await first.collect()
    await again.collect()

    for payload in transport.payloads:
        contents = [m["content"] for m in payload["messages"]]
        assert contents.count(PERSONA_PROMPT) == 1
        assert payload["messages"][0] == {"role": "system", "content": PERSONA_PROMPT}


def test_directive_requests_skip_the_persona() -> None:
    directive = Message(role="system", content=expression_prompt())
    reply = Message(role="assistant", content="やったのだー")

    assert with_persona([directive, reply]) == [directive, reply]
    assert with_persona([])[0].content == PERSONA_PROMPT


@pytest.mark.asyncio
async def test_long_history_is_truncated_to_the_context_window() -> None:
    transport = ScriptedTransport()
    client = _client(transport)
    # gpt-4 allows 8192 tokens, each message below costs 2500.
    history = [Message(role="user", content=str(i) * 10_000) for i in range(5)]

    stream = client.stream_completion(history, SamplingParams(model="gpt-4"), "sk-test")
    await stream.collect()

    assert [m.id for m in stream.submitted[1:]] == [m.id for m in history[-3:]]
    assert len(transport.payloads[0]["messages"]) == 4


def test_missing_key_and_unknown_model_fail_before_any_request() -> None:
    transport = ScriptedTransport()
    client = _client(transport)
    messages = [Message(role="user", content="Hi")]

    with pytest.raises(MissingCredentialError):
        client.stream_completion(messages, SamplingParams(), "")
    with pytest.raises(ModelNotFoundError):
        client.stream_completion(messages, SamplingParams(model="nope"), "sk-test")
    assert transport.payloads == []


@pytest.mark.asyncio
async def test_transport_error_propagates_while_iterating() -> None:
    transport = ScriptedTransport(TransportError(status_code=429, body='{"error": {"message": "Slow down"}}'))
    client = _client(transport)

    stream = client.stream_completion([Message(role="user", content="Hi")], SamplingParams(), "sk-test")
    with pytest.raises(TransportError, match="Slow down"):
        await stream.collect()
    assert stream.usage is None


@pytest.mark.asyncio
async def test_cancellation_reports_zero_usage() -> None:
    transport = ScriptedTransport(sse_chunks("one", "two", "three"))
    client = _client(transport)
    token = CancelToken()

    stream = client.stream_completion([Message(role="user", content="Hi")], SamplingParams(), "sk-test", token)
    received: list[str] = []
    async for delta in stream:
        received.append(delta)
        token.cancel()

    assert received == ["one"]
    assert stream.cancelled
    assert stream.usage is not None
    assert stream.usage.cancelled is True
    assert (stream.usage.prompt_tokens, stream.usage.completion_tokens) == (0, 0)


@pytest.mark.asyncio
async def test_stream_can_only_be_consumed_once() -> None:
    client = _client(ScriptedTransport())
    stream = client.stream_completion([Message(role="user", content="Hi")], SamplingParams(), "sk-test")

    await stream.collect()

    with pytest.raises(RuntimeError):
        stream.__aiter__()


@pytest.mark.asyncio
async def test_debug_logging_records_payload(caplog: pytest.LogCaptureFixture) -> None:
    client = _client(ScriptedTransport(), debug_logging=True)

    with caplog.at_level(logging.DEBUG, logger="zundachat.ai.client"):
        await client.stream_completion(
            [Message(role="user", content="Hello")], SamplingParams(), "sk-test"
        ).collect()

    assert any("Completion payload" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_aclose_closes_the_transport() -> None:
    transport = ScriptedTransport()

    await _client(transport).aclose()

    assert transport.closed is True


class _FakeModels:
    def __init__(self, payload: list[SimpleNamespace] | None = None, error: Exception | None = None) -> None:
        self._payload = payload or []
        self._error = error
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        if self._error is not None:
            raise self._error
        return SimpleNamespace(data=self._payload)


class _FakeOpenAI:
    def __init__(self, models: _FakeModels) -> None:
        self.models = models
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _openai_factory(models: _FakeModels, created: list[_FakeOpenAI], keys: list[str]):
    def factory(api_key: str) -> _FakeOpenAI:
        keys.append(api_key)
        fake = _FakeOpenAI(models)
        created.append(fake)
        return fake

    return factory


def _auth_error() -> AuthenticationError:
    request = httpx.Request("GET", "https://api.test/v1/models")
    response = httpx.Response(401, request=request)
    return AuthenticationError("Incorrect API key provided", response=response, body=None)


@pytest.mark.asyncio
async def test_fetch_models_lists_ids_and_closes_client() -> None:
    models = _FakeModels([SimpleNamespace(id="gpt-4o"), SimpleNamespace(id="gpt-4o-mini")])
    created: list[_FakeOpenAI] = []
    keys: list[str] = []
    client = _client(ScriptedTransport(), openai_factory=_openai_factory(models, created, keys))

    assert await client.fetch_models("sk-test") == ["gpt-4o", "gpt-4o-mini"]
    assert await client.test_key("sk-test") is True
    assert keys == ["sk-test", "sk-test"]
    assert all(fake.closed for fake in created)


@pytest.mark.asyncio
async def test_rejected_key_is_reported_as_invalid() -> None:
    created: list[_FakeOpenAI] = []
    client = _client(
        ScriptedTransport(), openai_factory=_openai_factory(_FakeModels(error=_auth_error()), created, [])
    )

    assert await client.test_key("sk-bad") is False
    assert await client.fetch_models("sk-bad") == []
    assert all(fake.closed for fake in created)


@pytest.mark.asyncio
async def test_connection_errors_invalidate_the_key() -> None:
    error = APIConnectionError(request=httpx.Request("GET", "https://api.test/v1/models"))
    client = _client(ScriptedTransport(), openai_factory=_openai_factory(_FakeModels(error=error), [], []))

    assert await client.test_key("sk-test") is False
