from __future__ import annotations

import threading
import time
from typing import Callable


class UpdatePulseTracker:
    """Remembers which tickets changed recently so views can highlight them.

    Entries live only in memory and lapse after ``window_seconds``.
    """

    def __init__(self, window_seconds: float = 3.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._expires: dict[str, float] = {}
        self._lock = threading.Lock()

    def mark(self, ticket_id: str) -> None:
        with self._lock:
            self._expires[ticket_id] = self._clock() + self.window_seconds

    def forget(self, ticket_id: str) -> None:
        with self._lock:
            self._expires.pop(ticket_id, None)

    def is_active(self, ticket_id: str) -> bool:
        with self._lock:
            expires = self._expires.get(ticket_id)
            if expires is None:
                return False
            if self._clock() >= expires:
                del self._expires[ticket_id]
                return False
            return True
