"""Error hierarchy for the completion client and turn orchestration.

Only :class:`TransportError` is meant to reach the user. The remaining
errors are developer-facing and are logged at the turn boundary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for machine-readable error codes."""

    EMPTY_INPUT = "empty_input"
    SESSION_NOT_FOUND = "session_not_found"
    MISSING_CREDENTIAL = "missing_credential"
    MODEL_NOT_FOUND = "model_not_found"
    TRANSPORT_ERROR = "transport_error"
    MALFORMED_FRAME = "malformed_frame"
    SPEECH_CONFIG = "speech_config"


@dataclass
class ChatError(Exception):
    """Base exception for every failure raised by this package."""

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    user_visible: ClassVar[bool] = False

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


@dataclass
class EmptyInputError(ChatError):
    """A blank message was submitted."""

    error_code: str = field(default=ErrorCode.EMPTY_INPUT, init=False)
    message: str = "Message is empty"


@dataclass
class SessionNotFoundError(ChatError):
    """No active chat, or no chat with the requested id."""

    error_code: str = field(default=ErrorCode.SESSION_NOT_FOUND, init=False)
    message: str = "Chat not found"
    chat_id: str | None = None


@dataclass
class MissingCredentialError(ChatError):
    """No API key is configured."""

    error_code: str = field(default=ErrorCode.MISSING_CREDENTIAL, init=False)
    message: str = "API key not set"


@dataclass
class ModelNotFoundError(ChatError):
    """The model identifier is not present in the registry."""

    error_code: str = field(default=ErrorCode.MODEL_NOT_FOUND, init=False)
    message: str = ""
    model: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            self.message = f"Model {self.model!r} not found"
        super().__post_init__()


@dataclass
class TransportError(ChatError):
    """The completion endpoint answered with a non-success status."""

    error_code: str = field(default=ErrorCode.TRANSPORT_ERROR, init=False)
    message: str = ""
    status_code: int = 0
    body: str = ""

    user_visible: ClassVar[bool] = True

    def __post_init__(self) -> None:
        if not self.message:
            self.message = extract_error_message(self.body) or f"Request failed with HTTP {self.status_code}"
        super().__post_init__()


@dataclass
class MalformedFrameError(ChatError):
    """A streamed frame did not contain valid JSON."""

    error_code: str = field(default=ErrorCode.MALFORMED_FRAME, init=False)
    message: str = "Malformed stream frame"
    frame: str = ""


@dataclass
class SpeechConfigError(ChatError):
    """Speech synthesis was requested without a usable voice or model."""

    error_code: str = field(default=ErrorCode.SPEECH_CONFIG, init=False)
    message: str = "Missing voice or model"


def extract_error_message(body: str) -> str:
    """Return ``error.message`` from a JSON error body, else the raw body."""

    try:
        payload = json.loads(body)
        message = payload["error"]["message"]
    except (ValueError, TypeError, KeyError):
        return body
    if not isinstance(message, str):
        return body
    return message


__all__ = [
    "ChatError",
    "EmptyInputError",
    "ErrorCode",
    "MalformedFrameError",
    "MissingCredentialError",
    "ModelNotFoundError",
    "SessionNotFoundError",
    "SpeechConfigError",
    "TransportError",
    "extract_error_message",
]
