from __future__ import annotations

import logging
from pathlib import Path


LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s %(message)s"

# Pillow logs every PNG chunk at DEBUG.
NOISY_LOGGERS = ("PIL",)


def resolve_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: str | int, log_file: Path | None = None) -> int:
    """Install stream (and optional file) handlers on the root logger; returns the level used."""
    resolved = resolve_level(level)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(level=resolved, format=LOG_FORMAT, handlers=handlers, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.INFO))
    return resolved
