"""Text-to-speech synthesis through the OpenAI audio endpoint."""

from __future__ import annotations

import logging
from typing import Any

from .client import OpenAIFactory, default_openai_factory
from .errors import MissingCredentialError, SpeechConfigError
from .transport import DEFAULT_BASE_URL

LOGGER = logging.getLogger(__name__)

TTS_VOICES: tuple[str, ...] = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")
TTS_MODELS: tuple[str, ...] = ("tts-1", "tts-1-hd")
RESPONSE_FORMAT = "mp3"


def validate_voice(voice: Any) -> bool:
    return voice in TTS_VOICES


class SpeechClient:
    """Synthesizes MP3 audio for assistant replies."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float | None = 90.0,
        openai_factory: OpenAIFactory | None = None,
    ) -> None:
        self._openai_factory = openai_factory or default_openai_factory(base_url, request_timeout)

    async def generate_audio(
        self,
        text: str,
        api_key: str | None,
        *,
        voice: str | None,
        model: str | None,
    ) -> bytes:
        """Return MP3 bytes for ``text``.

        Voice and model are validated before any network access.
        """

        if not voice or not model:
            raise SpeechConfigError()
        if not validate_voice(voice):
            raise SpeechConfigError(message=f"Unknown voice {voice!r}", details={"voices": list(TTS_VOICES)})
        if not api_key:
            raise MissingCredentialError()

        LOGGER.debug("Synthesizing %s character(s) with voice=%s model=%s", len(text), voice, model)
        client = self._openai_factory(api_key)
        try:
            response = await client.audio.speech.create(
                model=model,
                voice=voice,
                input=text,
                response_format=RESPONSE_FORMAT,
            )
        finally:
            await client.close()
        return response.content


__all__ = ["RESPONSE_FORMAT", "SpeechClient", "TTS_MODELS", "TTS_VOICES", "validate_voice"]
