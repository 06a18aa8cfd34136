import threading
from dataclasses import dataclass


@dataclass(frozen=True)
class ChaosState:
    under_load: bool = False
    queue_depth: int = 0


class ChaosController:
    """Process-wide load flag and undelivered-message queue depth.

    One instance is created per application and handed to the handlers;
    every read returns an immutable ``ChaosState`` copy.
    """

    def __init__(self, under_load: bool = False):
        self._lock = threading.Lock()
        self._under_load = bool(under_load)
        self._queue_depth = 0

    def set_under_load(self, enabled: bool) -> ChaosState:
        with self._lock:
            self._under_load = bool(enabled)
            return ChaosState(self._under_load, self._queue_depth)

    def current_state(self) -> ChaosState:
        with self._lock:
            return ChaosState(self._under_load, self._queue_depth)

    def adjust_queue_depth(self, delta: int) -> int:
        with self._lock:
            self._queue_depth = max(0, self._queue_depth + int(delta))
            return self._queue_depth
