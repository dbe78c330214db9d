"""Parser for the ``data:``-prefixed frames of a streamed chat completion."""

from __future__ import annotations

import json
import logging
from typing import Any

from .errors import MalformedFrameError

LOGGER = logging.getLogger(__name__)

FRAME_DELIMITER = "\n\n"
DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class FrameParser:
    """Turns raw body chunks into content deltas.

    Each chunk is parsed on its own: it is split on the blank-line frame
    delimiter and every frame is decoded independently. Frames without a
    content delta (role announcements, finish reasons) and frames that are
    not valid JSON are skipped. Once the ``[DONE]`` marker is seen the
    parser ignores everything that follows.
    """

    def __init__(self) -> None:
        self._done = False
        self.skipped_frames = 0

    @property
    def done(self) -> bool:
        return self._done

    def feed(self, chunk: bytes | str) -> list[str]:
        """Return the content deltas contained in ``chunk``, in order."""

        if self._done:
            return []
        text = chunk.decode("utf-8", errors="replace") if isinstance(chunk, bytes) else chunk
        deltas: list[str] = []
        for frame in text.split(FRAME_DELIMITER):
            data = _strip_data_prefix(frame)
            if not data:
                continue
            if data == DONE_MARKER:
                self._done = True
                break
            try:
                payload = _decode(data)
            except MalformedFrameError as exc:
                self.skipped_frames += 1
                LOGGER.warning("Skipping malformed stream frame: %s", exc.frame[:200])
                continue
            content = extract_delta(payload)
            if content is None:
                continue
            deltas.append(content)
        return deltas


def _strip_data_prefix(frame: str) -> str:
    cleaned = frame.strip()
    if cleaned.startswith(DATA_PREFIX):
        cleaned = cleaned[len(DATA_PREFIX):].strip()
    return cleaned


def _decode(data: str) -> Any:
    try:
        return json.loads(data)
    except json.JSONDecodeError as exc:
        raise MalformedFrameError(frame=data, details={"error": str(exc)}) from exc


def extract_delta(payload: Any) -> str | None:
    """Return ``choices[0].delta.content`` or ``None`` for control frames."""

    if not isinstance(payload, dict):
        return None
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if not isinstance(content, str):
        return None
    return content


__all__ = ["DATA_PREFIX", "DONE_MARKER", "FRAME_DELIMITER", "FrameParser", "extract_delta"]
