"""Logging helpers: message filtering, terse formatting and output pausing."""

from __future__ import annotations

import io
import logging
import threading
from typing import Callable, Iterable, TextIO


class LogsFilter(logging.Filter):
    """Drop records at the given levels whose message contains any filter string."""

    def __init__(self, levels: Iterable[int], *filters: str) -> None:
        super().__init__()
        self.levels = frozenset(levels)
        self.filters = filters

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno not in self.levels:
            return True
        message = record.getMessage()
        return not any(f in message for f in self.filters)


class LevelFormatter(logging.Formatter):
    """Format records as ``LEVEL: message``."""

    def format(self, record: logging.LogRecord) -> str:
        return f"{record.levelname.upper()}: {record.getMessage()}"


class _BufferedStream:
    """Collects writes until resumed, then passes them straight through."""

    def __init__(self, target: TextIO) -> None:
        self.target = target
        self._lock = threading.Lock()
        self._buffer: io.StringIO | None = io.StringIO()

    def write(self, text: str) -> int:
        with self._lock:
            if self._buffer is None:
                return self.target.write(text)
            return self._buffer.write(text)

    def flush(self) -> None:
        with self._lock:
            if self._buffer is None:
                self.target.flush()

    def resume(self) -> None:
        with self._lock:
            if self._buffer is None:
                return
            self.target.write(self._buffer.getvalue())
            self.target.flush()
            self._buffer = None


def pause(logger: logging.Logger) -> Callable[[], None]:
    """Hold back the logger's stream output; the returned callable releases it."""
    paused: list[tuple[logging.StreamHandler, _BufferedStream]] = []
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream is not None:
            buffered = _BufferedStream(handler.stream)
            handler.setStream(buffered)  # type: ignore[arg-type]
            paused.append((handler, buffered))

    def resume() -> None:
        for handler, buffered in paused:
            buffered.resume()
            if handler.stream is buffered:
                handler.setStream(buffered.target)

    return resume