# relayer/pipeline/admission.py

import threading
from contextlib import contextmanager
from typing import Dict, Generator

from ..core.logging import LoggingMixin


class AdmissionController(LoggingMixin):
    """Caps concurrent in-flight destination submissions per chain."""

    def __init__(self, limits: Dict[int, int], acquire_poll: float = 0.5):
        self._limits = dict(limits)
        self._semaphores = {
            chain_id: threading.BoundedSemaphore(limit) for chain_id, limit in limits.items()
        }
        self._in_flight = {chain_id: 0 for chain_id in limits}
        self._lock = threading.Lock()
        self.acquire_poll = acquire_poll

    def limit(self, chain_id: int) -> int:
        return self._limits[chain_id]

    def in_flight(self, chain_id: int) -> int:
        with self._lock:
            return self._in_flight[chain_id]

    @contextmanager
    def slot(self, chain_id: int, stop_event: threading.Event) -> Generator[bool, None, None]:
        """
        Hold one submission slot on `chain_id` for the duration of the block.

        Yields False without a slot when `stop_event` is set while waiting.
        """
        semaphore = self._semaphores[chain_id]
        acquired = False
        while not stop_event.is_set():
            if semaphore.acquire(timeout=self.acquire_poll):
                acquired = True
                break

        if not acquired:
            yield False
            return

        with self._lock:
            self._in_flight[chain_id] += 1
        try:
            yield True
        finally:
            with self._lock:
                self._in_flight[chain_id] -= 1
            semaphore.release()
