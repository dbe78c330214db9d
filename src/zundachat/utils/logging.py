"""Logging setup for the console client."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = ["setup_logging"]

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_QUIET_LOGGERS = ("asyncio", "httpx", "httpcore", "openai")
_log_path: Path | None = None


def setup_logging(level: int = logging.INFO, *, console: bool = True, force: bool = False) -> Path:
    """Send records to ``zundachat.log`` and, with ``console``, to stderr.

    The log directory is ``~/.zundachat/logs`` unless ``ZUNDACHAT_LOG_DIR``
    names another one. Repeated calls keep the first setup unless ``force``.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    log_dir = Path(os.environ.get("ZUNDACHAT_LOG_DIR") or Path.home() / ".zundachat" / "logs").expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "zundachat.log"

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    _log_path = log_path
    return log_path
