"""Console entry point for chatting with the persona bot."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import CompletionClient
from .ai.errors import ChatError
from .ai.prompts import DEFAULT_EXPRESSION, EXPRESSIONS
from .ai.speech import SpeechClient
from .chat.events import MessageDelta
from .chat.message_model import Message
from .chat.session import ChatStore, Severity
from .chat.turns import TurnOrchestrator
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_QUIT_COMMANDS = {"/quit", "/exit"}
_LOGGER = logging.getLogger(__name__)


class ConsoleNotificationSink:
    """Prints user-facing notifications to the terminal."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stderr

    def show(self, message: str, severity: Severity = "error") -> None:
        self._stream.write(f"\n[{severity}] {message}\n")
        self._stream.flush()


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `zundachat` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("ZUNDACHAT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("ZUNDACHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.check_key:
        ok = asyncio.run(check_key(settings))
        raise SystemExit(0 if ok else 1)

    try:
        asyncio.run(run_chat(settings))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def check_key(
    settings: Settings,
    *,
    stream: TextIO | None = None,
    client: CompletionClient | None = None,
) -> bool:
    destination = stream or sys.stdout
    active_client = client or CompletionClient(
        base_url=settings.base_url, request_timeout=settings.request_timeout
    )
    try:
        if not await active_client.test_key(settings.api_key):
            destination.write("API key is invalid or the service is unavailable.\n")
            return False
        models = await active_client.fetch_models(settings.api_key)
    finally:
        if client is None:
            await active_client.aclose()
    destination.write("API key is valid. Available models:\n")
    for model in sorted(models):
        destination.write(f"  {model}\n")
    return True


async def run_chat(
    settings: Settings,
    *,
    client: CompletionClient | None = None,
    speech: SpeechClient | None = None,
    read_line: Any = None,
    stream: TextIO | None = None,
) -> ChatStore:
    """Run the interactive loop until EOF or ``/quit``; return the final store."""

    out = stream or sys.stdout
    reader = read_line or _read_stdin_line
    completion_client = client or CompletionClient(
        base_url=settings.base_url,
        request_timeout=settings.request_timeout,
        debug_logging=settings.debug_logging,
    )
    speech_client = speech or SpeechClient(base_url=settings.base_url, request_timeout=settings.request_timeout)
    store = ChatStore(settings)
    orchestrator = TurnOrchestrator(store, completion_client, ConsoleNotificationSink(out))
    store.new_chat()

    def _echo(event: MessageDelta) -> None:
        out.write(event.delta)
        out.flush()

    store.subscribe(MessageDelta, _echo)
    try:
        while True:
            line = await reader()
            if line is None or line.strip() in _QUIT_COMMANDS:
                break
            text = line.strip()
            if not text:
                continue
            if text.startswith("/say"):
                await _speak(store, speech_client, text[len("/say"):].strip(), out)
                continue
            with _abort_on_sigint(orchestrator):
                await orchestrator.submit_message(Message(role="user", content=text))
            out.write("\n")
            _print_turn_summary(store, out)
    finally:
        if client is None:
            await completion_client.aclose()
    return store


async def _read_stdin_line() -> str | None:
    try:
        return await asyncio.to_thread(input, "> ")
    except EOFError:
        return None


@contextlib.contextmanager
def _abort_on_sigint(orchestrator: TurnOrchestrator) -> Iterator[None]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.abort_current_request)
    except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows / non-main thread
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


def _print_turn_summary(store: ChatStore, out: TextIO) -> None:
    chat = store.active_chat
    if chat is None:
        return
    number = chat.expression or DEFAULT_EXPRESSION
    label, _description = EXPRESSIONS[number - 1]
    out.write(f"  [expression {number}: {label}]")
    if chat.title:
        out.write(f"  [title: {chat.title}]")
    out.write(f"  [tokens {chat.prompt_tokens_used}+{chat.completion_tokens_used}, ${chat.cost_incurred:.4f}]\n")
    out.flush()


async def _speak(store: ChatStore, speech: SpeechClient, target: str, out: TextIO) -> None:
    text = store.tts_text
    if not text:
        out.write("Nothing to say yet.\n")
        return
    settings = store.settings
    try:
        audio = await speech.generate_audio(
            text, store.api_key, voice=settings.tts_voice, model=settings.tts_model
        )
    except ChatError as exc:
        out.write(f"Speech unavailable: {exc.message}\n")
        return
    path = Path(target or "reply.mp3").expanduser()
    path.write_bytes(audio)
    out.write(f"Saved {len(audio)} bytes of audio to {path}\n")


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="zundachat",
        add_help=True,
        description="Chat with Zundamon in the terminal or inspect the configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--check-key",
        action="store_true",
        help="Validate the configured API key, list available models, and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.zundachat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key", ""))
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": sorted(name for name in os.environ if name.startswith("ZUNDACHAT_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    main()
