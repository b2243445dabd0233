import threading
from dataclasses import replace
from typing import Callable

from ..models import ScanStatus


class ScanStatusTracker:
    """
    Owns the single ScanStatus record.
    Writers mutate it through update(); readers only ever get copies.
    """
    def __init__(self):
        self._lock = threading.Lock()
        self._status = ScanStatus()

    def snapshot(self) -> ScanStatus:
        with self._lock:
            return replace(self._status)

    def is_running(self) -> bool:
        with self._lock:
            return self._status.running

    def try_start(self, message: str = "Starting scan...") -> bool:
        """Claims the running flag. Returns False if a pass already holds it."""
        with self._lock:
            if self._status.running:
                return False
            self._status = ScanStatus(running=True, message=message)
            return True

    def update(self, fn: Callable[[ScanStatus], None]):
        with self._lock:
            fn(self._status)

    def set_message(self, message: str):
        with self._lock:
            self._status.message = message

    def finish(self, message: str):
        with self._lock:
            self._status.running = False
            self._status.message = message
