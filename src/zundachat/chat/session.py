"""Session-owning chat store and notification sink.

All mutations of chat state go through :class:`ChatStore` methods so the
streaming callbacks of the primary reply and its follow-up requests share
one consistent view. Mutations address messages by id and never reorder
them.
"""

from __future__ import annotations

import logging
from typing import Callable, Literal, Protocol

from ..ai.errors import SessionNotFoundError
from ..ai.transport import CancelToken
from ..services.settings import Settings
from .events import (
    ApiStateChanged,
    ChatUpdated,
    E,
    EventBus,
    MessageAppended,
    MessageDelta,
    MessageFinished,
    MessagesTruncated,
)
from .message_model import ApiState, Chat, Message

LOGGER = logging.getLogger(__name__)

Severity = Literal["info", "warning", "error"]


class NotificationSink(Protocol):
    """Displays user-facing messages."""

    def show(self, message: str, severity: Severity = "error") -> None:
        ...


class LoggingNotificationSink:
    """Notification sink that writes to the log instead of a UI."""

    _LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def show(self, message: str, severity: Severity = "error") -> None:
        self._logger.log(self._LEVELS.get(severity, logging.ERROR), "%s", message)


class ChatStore:
    """Owns the chat collection and the process-wide request state."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        api_key: str | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._api_key = api_key if api_key is not None else (self._settings.api_key or None)
        self._bus = event_bus or EventBus()
        self._chats: list[Chat] = []
        self._active_chat_id: str | None = None
        self._api_state = ApiState.IDLE
        self._cancel_token: CancelToken | None = None
        self._tts_id: str | None = None
        self._tts_text = ""

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------
    @property
    def settings(self) -> Settings:
        return self._settings

    @settings.setter
    def settings(self, value: Settings) -> None:
        self._settings = value

    @property
    def api_key(self) -> str | None:
        return self._api_key

    @api_key.setter
    def api_key(self, value: str | None) -> None:
        self._api_key = value or None

    @property
    def chats(self) -> tuple[Chat, ...]:
        return tuple(self._chats)

    @property
    def active_chat_id(self) -> str | None:
        return self._active_chat_id

    @property
    def active_chat(self) -> Chat | None:
        if self._active_chat_id is None:
            return None
        return self.get_chat(self._active_chat_id)

    @property
    def api_state(self) -> ApiState:
        return self._api_state

    @property
    def cancel_token(self) -> CancelToken | None:
        return self._cancel_token

    @property
    def tts_id(self) -> str | None:
        return self._tts_id

    @property
    def tts_text(self) -> str:
        return self._tts_text

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        return self._bus.subscribe(event_type, handler)

    # ------------------------------------------------------------------
    # Chat collection
    # ------------------------------------------------------------------
    def new_chat(self, *, activate: bool = True) -> Chat:
        return self.add_chat(Chat(), activate=activate)

    def add_chat(self, chat: Chat, *, activate: bool = False) -> Chat:
        self._chats.append(chat)
        if activate:
            self._active_chat_id = chat.id
        return chat

    def remove_chat(self, chat_id: str) -> None:
        self._chats = [chat for chat in self._chats if chat.id != chat_id]
        if self._active_chat_id == chat_id:
            self._active_chat_id = None

    def set_active_chat(self, chat_id: str | None) -> None:
        if chat_id is not None and self.get_chat(chat_id) is None:
            raise SessionNotFoundError(chat_id=chat_id)
        self._active_chat_id = chat_id

    def get_chat(self, chat_id: str) -> Chat | None:
        for chat in self._chats:
            if chat.id == chat_id:
                return chat
        return None

    def require_chat(self, chat_id: str) -> Chat:
        chat = self.get_chat(chat_id)
        if chat is None:
            raise SessionNotFoundError(chat_id=chat_id)
        return chat

    # ------------------------------------------------------------------
    # Message mutations
    # ------------------------------------------------------------------
    def truncate_messages_at(self, chat_id: str, index: int) -> None:
        """Drop the message at ``index`` and everything after it."""

        chat = self.require_chat(chat_id)
        del chat.messages[index:]
        self._bus.publish(MessagesTruncated(chat_id=chat_id, length=len(chat.messages)))

    def append_message(self, chat_id: str, message: Message) -> None:
        chat = self.require_chat(chat_id)
        chat.messages.append(message)
        self._bus.publish(MessageAppended(chat_id=chat_id, message_id=message.id))

    def append_to_message(self, chat_id: str, message_id: str, delta: str) -> bool:
        """Append ``delta`` to a message's content; False when the message is gone."""

        chat = self.get_chat(chat_id)
        message = chat.find_message(message_id) if chat is not None else None
        if message is None:
            LOGGER.debug("Dropping delta for missing message %s in chat %s", message_id, chat_id)
            return False
        message.content += delta
        self._bus.publish(MessageDelta(chat_id=chat_id, message_id=message_id, delta=delta))
        return True

    def finish_message(self, chat_id: str, message_id: str) -> None:
        chat = self.get_chat(chat_id)
        message = chat.find_message(message_id) if chat is not None else None
        if message is None:
            return
        message.loading = False
        self._bus.publish(MessageFinished(chat_id=chat_id, message_id=message_id))

    # ------------------------------------------------------------------
    # Derived chat fields
    # ------------------------------------------------------------------
    def set_latest_message(self, chat_id: str, text: str | None) -> None:
        chat = self.require_chat(chat_id)
        chat.latest_message = text
        self._bus.publish(ChatUpdated(chat_id=chat_id, field="latest_message"))

    def set_title(self, chat_id: str, title: str | None) -> None:
        chat = self.require_chat(chat_id)
        chat.title = title
        self._bus.publish(ChatUpdated(chat_id=chat_id, field="title"))

    def add_usage(self, chat_id: str, prompt_tokens: int, completion_tokens: int, cost: float) -> None:
        chat = self.get_chat(chat_id)
        if chat is None:
            LOGGER.debug("Usage for removed chat %s discarded", chat_id)
            return
        chat.prompt_tokens_used += max(0, prompt_tokens)
        chat.completion_tokens_used += max(0, completion_tokens)
        chat.cost_incurred += max(0.0, cost)
        self._bus.publish(ChatUpdated(chat_id=chat_id, field="usage"))

    def reset_usage(self, chat_id: str) -> None:
        chat = self.require_chat(chat_id)
        chat.prompt_tokens_used = 0
        chat.completion_tokens_used = 0
        chat.cost_incurred = 0.0
        self._bus.publish(ChatUpdated(chat_id=chat_id, field="usage"))

    # ------------------------------------------------------------------
    # Request state
    # ------------------------------------------------------------------
    def set_api_state(self, state: ApiState) -> None:
        if state is self._api_state:
            return
        LOGGER.debug("API state %s -> %s", self._api_state.value, state.value)
        self._api_state = state
        self._bus.publish(ApiStateChanged(state=state))

    def swap_cancel_token(self, token: CancelToken | None) -> CancelToken | None:
        """Install ``token`` as the current abort handle and return the previous one."""

        previous, self._cancel_token = self._cancel_token, token
        return previous

    def take_cancel_token(self) -> CancelToken | None:
        return self.swap_cancel_token(None)

    def reset_tts(self, message_id: str | None) -> None:
        self._tts_id = message_id
        self._tts_text = ""

    def append_tts(self, delta: str) -> None:
        self._tts_text += delta


__all__ = ["ChatStore", "LoggingNotificationSink", "NotificationSink", "Severity"]
