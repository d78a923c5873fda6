# relayer/stream/log_reader.py

import threading
from typing import Callable, List, Optional

from msgspec import Struct

from ..clients.interfaces import ChainClientInterface
from ..core.logging import LoggingMixin
from ..database.repositories import CursorRepository
from ..types import ChainConfig, ChainEvent, Direction, RetryConfig, TransientInfraError
from ..utils.backoff import Backoff


class EventBatch(Struct, frozen=True):
    from_block: int
    to_block: int
    events: List[ChainEvent]


class ChainLogReader(LoggingMixin):
    """
    Pulls confirmed bridge events of one kind from a single chain.

    Blocks younger than the chain's confirmation depth are never returned.
    The persisted cursor only moves when the caller acknowledges a batch,
    so a crash between fetch and acknowledge replays the batch.
    """

    def __init__(self,
                 client: ChainClientInterface,
                 cursor_repo: CursorRepository,
                 chain: ChainConfig,
                 direction: Direction,
                 read_retry: RetryConfig):
        self.client = client
        self.cursor_repo = cursor_repo
        self.chain = chain
        self.direction = direction
        self.backoff = Backoff.from_config(read_retry)

    @property
    def cursor(self) -> Optional[int]:
        return self.cursor_repo.get_last_block(self.chain.chain_id, self.direction)

    def next_from_block(self) -> int:
        last = self.cursor
        if last is None:
            return self.chain.genesis_block
        return last + 1

    def fetch_next_batch(self) -> Optional[EventBatch]:
        """
        Fetch the next confirmed block range, or None when the reader is caught up.

        Raises:
            TransientInfraError: endpoint unreachable or returned garbage
        """
        latest = self.client.get_latest_block_number()
        safe_to = latest - self.chain.confirmation_depth
        from_block = self.next_from_block()

        if safe_to < from_block:
            return None

        to_block = min(safe_to, from_block + self.chain.max_batch_blocks - 1)
        events = self.client.get_events(self.direction.event_kind, from_block, to_block)
        events = sorted(events, key=lambda e: e.identity.sort_key)

        if events:
            self.log_debug("Fetched bridge events",
                           chain=self.chain.name,
                           direction=self.direction.value,
                           block_number=to_block,
                           count=len(events))

        return EventBatch(from_block=from_block, to_block=to_block, events=events)

    def wait_for_batch(self, stop_event: threading.Event,
                       on_idle: Optional[Callable[[], None]] = None) -> Optional[EventBatch]:
        """
        Block until a non-empty range is available or `stop_event` is set.

        Read failures are retried with backoff without limit; the cursor is
        left where it was. Empty ranges are acknowledged immediately. `on_idle`
        runs each time the reader finds itself caught up with the tip.
        """
        attempt = 0
        while not stop_event.is_set():
            try:
                batch = self.fetch_next_batch()
            except TransientInfraError as e:
                delay = self.backoff.delay(attempt)
                attempt += 1
                self.log_warning("Log read failed, retrying",
                                 chain=self.chain.name,
                                 direction=self.direction.value,
                                 retry_count=attempt,
                                 error=str(e))
                stop_event.wait(delay)
                continue

            attempt = 0
            if batch is None:
                if on_idle is not None:
                    on_idle()
                stop_event.wait(self.chain.poll_interval)
                continue

            if not batch.events:
                self.acknowledge(batch)
                continue

            return batch
        return None

    def acknowledge(self, batch: EventBatch) -> int:
        return self.cursor_repo.advance(self.chain.chain_id, self.direction, batch.to_block)
