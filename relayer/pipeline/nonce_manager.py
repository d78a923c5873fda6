# relayer/pipeline/nonce_manager.py

import threading
from typing import Optional

from ..clients.interfaces import ChainClientInterface
from ..core.logging import LoggingMixin


class NonceManager(LoggingMixin):
    """
    Hands out relayer nonces for one chain.

    The next nonce is the larger of the local counter and the node's
    pending transaction count, so restarts and out-of-band transactions
    from the same key are picked up.
    """

    def __init__(self, client: ChainClientInterface):
        self.client = client
        self._next: Optional[int] = None
        self._lock = threading.Lock()

    def next_nonce(self) -> int:
        with self._lock:
            pending = self.client.get_pending_nonce()
            nonce = pending if self._next is None else max(self._next, pending)
            self._next = nonce + 1
            return nonce

    def reset(self) -> None:
        """Forget the local counter after a broadcast that may not have landed."""
        with self._lock:
            self._next = None
        self.log_debug("Nonce counter reset", chain=self.client.name)
