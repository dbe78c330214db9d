"""Completion transport, token accounting, and model registry."""

from .errors import (
    ChatError,
    EmptyInputError,
    MissingCredentialError,
    ModelNotFoundError,
    SessionNotFoundError,
    SpeechConfigError,
    TransportError,
)
from .models import ModelInfo, get_model_info
from .transport import CancelToken, StreamingTransport

__all__ = [
    "CancelToken",
    "ChatError",
    "EmptyInputError",
    "MissingCredentialError",
    "ModelInfo",
    "ModelNotFoundError",
    "SessionNotFoundError",
    "SpeechConfigError",
    "StreamingTransport",
    "TransportError",
    "get_model_info",
]
