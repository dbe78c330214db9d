"""Turn orchestration: primary reply, expression classification, and titling."""

from __future__ import annotations

import logging

from ..ai.client import CompletionClient, CompletionUsage, SamplingParams
from ..ai.errors import ChatError, ModelNotFoundError, TransportError
from ..ai.models import get_model_info
from ..ai.prompts import expression_prompt, title_prompt
from ..ai.transport import CancelToken
from .message_model import ApiState, Message
from .session import ChatStore, LoggingNotificationSink, NotificationSink

LOGGER = logging.getLogger(__name__)

TITLE_MIN_MESSAGES = 2
TITLE_MIN_WORDS = 4
_TITLE_PREFIX = "title:"
_TITLE_TRAILING_PUNCTUATION = ",.;:!?"


def normalize_title(text: str) -> str:
    """Strip a ``Title:`` prefix and trailing punctuation from a model title.

    Applying it to an already normalized title returns it unchanged.
    """

    if text.lower().startswith(_TITLE_PREFIX):
        text = text[len(_TITLE_PREFIX):].strip()
    return text.rstrip(_TITLE_TRAILING_PUNCTUATION)


class TurnOrchestrator:
    """Runs one conversational turn against the shared :class:`ChatStore`.

    A turn streams the assistant reply into a placeholder message, then
    classifies the reply's expression and, once the conversation is long
    enough, asks for a short title. Only one primary reply streams at a
    time: submitting again cancels the previous request and any follow-up
    requests still running.
    """

    def __init__(
        self,
        store: ChatStore,
        client: CompletionClient,
        notifier: NotificationSink | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._notifier = notifier or LoggingNotificationSink()
        self._subflow_token: CancelToken | None = None

    @property
    def store(self) -> ChatStore:
        return self._store

    async def submit_message(self, message: Message) -> None:
        """Append ``message`` to the active chat and stream the reply.

        When ``message.id`` already exists in the chat, that message and
        everything after it are replaced (edit and resubmit).
        """

        store = self._store
        if not message.content.strip():
            LOGGER.error("Message is empty")
            return
        chat = store.active_chat
        if chat is None:
            LOGGER.error("Chat not found")
            return
        api_key = store.api_key
        if not api_key:
            LOGGER.error("API key not set")
            return
        LOGGER.debug("Submitting message %s to chat %s", message.id, chat.id)

        self._cancel_subflows()
        index = chat.index_of(message.id)
        if index != -1:
            store.truncate_messages_at(chat.id, index)
        store.append_message(chat.id, message)
        store.set_api_state(ApiState.LOADING)

        assistant = Message(role="assistant", content="", loading=True)
        store.append_message(chat.id, assistant)

        params = SamplingParams.from_settings(store.settings)
        token = CancelToken()
        previous = store.swap_cancel_token(token)
        if previous is not None:
            previous.cancel()
        store.reset_tts(assistant.id)

        try:
            usage = await self._stream_reply(chat.id, assistant.id, params, api_key, token)
        finally:
            store.finish_message(chat.id, assistant.id)
        if usage is None:
            return
        if store.cancel_token is token:
            store.take_cancel_token()
            store.set_api_state(ApiState.IDLE)
        self._update_tokens(chat.id, usage)
        if usage.cancelled:
            LOGGER.debug("Reply %s was cancelled; skipping follow-up requests", assistant.id)
            return

        await self._run_subflows(chat.id, params, api_key)

    def abort_current_request(self) -> None:
        """Cancel the in-flight primary reply, if any, and return to idle."""

        token = self._store.take_cancel_token()
        if token is not None:
            LOGGER.debug("Aborting current request")
            token.cancel()
        self._store.set_api_state(ApiState.IDLE)

    async def _stream_reply(
        self,
        chat_id: str,
        assistant_id: str,
        params: SamplingParams,
        api_key: str,
        token: CancelToken,
    ) -> CompletionUsage | None:
        store = self._store
        chat = store.require_chat(chat_id)
        usage: CompletionUsage | None = None
        try:
            stream = self._client.stream_completion(chat.messages, params, api_key, token)
            async for delta in stream:
                store.append_to_message(chat_id, assistant_id, delta)
                if store.tts_id == assistant_id:
                    store.append_tts(delta)
            usage = stream.usage
        except TransportError as exc:
            LOGGER.warning("Reply failed with HTTP %s: %s", exc.status_code, exc.message)
            self._notifier.show(exc.message, "error")
        except ChatError as exc:
            LOGGER.error("Reply could not be requested: %s", exc)
        finally:
            if usage is None:
                self._release(token)
        return usage

    def _release(self, token: CancelToken) -> None:
        # A newer submission owns the store state once it swapped the token.
        if self._store.cancel_token is token:
            self.abort_current_request()

    def _update_tokens(self, chat_id: str, usage: CompletionUsage | None) -> None:
        if usage is None or usage.cancelled:
            return
        model = self._store.settings.model
        try:
            cost = get_model_info(model).cost(usage.prompt_tokens, usage.completion_tokens)
        except ModelNotFoundError:
            LOGGER.warning("No pricing for model %s; recording zero cost", model)
            cost = 0.0
        self._store.add_usage(chat_id, usage.prompt_tokens, usage.completion_tokens, cost)

    # ------------------------------------------------------------------
    # Follow-up requests
    # ------------------------------------------------------------------
    def _cancel_subflows(self) -> None:
        token, self._subflow_token = self._subflow_token, None
        if token is not None:
            LOGGER.debug("Cancelling follow-up requests of the previous turn")
            token.cancel()

    async def _run_subflows(self, chat_id: str, params: SamplingParams, api_key: str) -> None:
        token = CancelToken()
        self._subflow_token = token
        try:
            await self._find_expression(chat_id, params, api_key, token)
            if token.cancelled or not self._store.settings.auto_title:
                return
            await self._find_title(chat_id, params, api_key, token)
        finally:
            if self._subflow_token is token:
                self._subflow_token = None

    async def _find_expression(
        self, chat_id: str, params: SamplingParams, api_key: str, token: CancelToken
    ) -> None:
        store = self._store
        chat = store.get_chat(chat_id)
        if chat is None:
            LOGGER.error("Chat not found")
            return
        directive = Message(role="system", content=expression_prompt())
        first = True
        try:
            stream = self._client.stream_completion(
                [directive, *chat.messages[-1:]], params, api_key, token
            )
            async for delta in stream:
                text = delta if first else (chat.latest_message or "") + delta
                first = False
                store.set_latest_message(chat_id, text)
        except ChatError as exc:
            LOGGER.warning("Expression classification failed: %s", exc)
            return
        LOGGER.debug("Expression for chat %s: %r", chat_id, chat.latest_message)
        self._update_tokens(chat_id, stream.usage)

    async def _find_title(
        self, chat_id: str, params: SamplingParams, api_key: str, token: CancelToken
    ) -> None:
        store = self._store
        chat = store.get_chat(chat_id)
        if chat is None:
            LOGGER.error("Chat not found")
            return
        if chat.title is not None:
            return
        if len(chat.messages) < TITLE_MIN_MESSAGES or chat.word_count() < TITLE_MIN_WORDS:
            return

        # Claim the title first so the request runs once per chat.
        store.set_title(chat_id, "")
        history = chat.messages[1:]
        directive = Message(role="system", content=title_prompt([m.content for m in history]))
        try:
            stream = self._client.stream_completion([directive, *history], params, api_key, token)
            async for delta in stream:
                store.set_title(chat_id, normalize_title((chat.title or "") + delta))
        except ChatError as exc:
            LOGGER.warning("Title generation failed: %s", exc)
            return
        finally:
            # An empty title only marks a request in flight.
            if not chat.title and store.get_chat(chat_id) is chat:
                store.set_title(chat_id, None)
        LOGGER.debug("Title for chat %s: %r", chat_id, chat.title)
        self._update_tokens(chat_id, stream.usage)


__all__ = ["TITLE_MIN_MESSAGES", "TITLE_MIN_WORDS", "TurnOrchestrator", "normalize_title"]
