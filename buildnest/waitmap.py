"""A map whose readers block until the keys they ask for have been set."""

from __future__ import annotations

import threading
import time
from typing import Any


class WaitMap:
    """Thread-safe key/value map where ``get`` waits for keys to appear."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}
        self._cond = threading.Condition()

    def set(self, key: str, value: Any) -> None:
        """Store a value and wake any readers waiting for it."""
        with self._cond:
            self._values[key] = value
            self._cond.notify_all()

    def get(self, *args: str, timeout: float | None = None) -> dict[str, Any]:
        """Wait until every key is set and return them; raise TimeoutError on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        result: dict[str, Any] = {}
        with self._cond:
            for key in args:
                while key not in self._values:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        raise TimeoutError(f"timed out waiting for key {key!r}")
                    self._cond.wait(remaining)
                result[key] = self._values[key]
        return result