# relayer/pipeline/relay_pipeline.py

import threading
from typing import Dict, Optional

from ..core.logging import LoggingMixin
from ..database.repositories import LedgerOutcome
from ..services.quorum import SignatureCollector
from ..stream.log_reader import ChainLogReader, EventBatch
from ..transform.state_machine import TransferStateMachine
from ..types import (
    ChainError,
    Direction,
    DispatchConfig,
    DispatchInterrupted,
    InvalidTransitionError,
    ReorganizationError,
    RetryConfig,
    Transfer,
    TransferStatus,
)
from ..utils.backoff import Backoff
from .dispatcher import ActionDispatcher


COUNTERS = ('observed', 'duplicates', 'confirmed', 'dead_lettered', 'flagged', 'failed_attempts')


class RelayPipeline(LoggingMixin):
    """
    Reader -> state machine -> dispatcher for one direction.

    Events are handled strictly in (block, log index) order and each
    transfer is driven to a terminal status, or retried in place, before
    the next one is touched. Submission order on the destination chain
    therefore follows event order on the source chain.
    """

    def __init__(self,
                 direction: Direction,
                 reader: ChainLogReader,
                 state_machine: TransferStateMachine,
                 dispatcher: ActionDispatcher,
                 retry: RetryConfig,
                 dispatch: DispatchConfig,
                 stop_event: threading.Event,
                 collector: Optional[SignatureCollector] = None):
        self.direction = direction
        self.reader = reader
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self.backoff = Backoff.from_config(retry)
        self.verify_events = dispatch.verify_event_before_dispatch
        self.stop_event = stop_event
        self.collector = collector

        self._counters = {name: 0 for name in COUNTERS}
        self._counter_lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"{self.direction.value}@{self.reader.chain.name}"

    # === Worker loop ===

    def run(self) -> None:
        self.log_info("Pipeline starting", direction=self.direction.value, chain=self.reader.chain.name)
        recovered = False
        failures = 0
        while not self.stop_event.is_set():
            try:
                if not recovered:
                    self.recover()
                    recovered = True
                batch = self.reader.wait_for_batch(self.stop_event, on_idle=self.recover)
                if batch is None:
                    break
                self.process_batch(batch)
                failures = 0
            except Exception as e:
                # Database outages and the like: keep the worker alive, nothing was acknowledged
                self.logger.exception(f"Pipeline {self.name} iteration failed: {e}")
                self.stop_event.wait(self.backoff.delay(failures))
                failures += 1

        self.log_info("Pipeline stopped", direction=self.direction.value, chain=self.reader.chain.name)

    def run_once(self) -> int:
        """Handle at most one confirmed batch without waiting. Returns events handled."""
        batch = self.reader.fetch_next_batch()
        if batch is None:
            return 0
        self.process_batch(batch)
        return len(batch.events)

    def recover(self) -> None:
        """Resume this direction's non-terminal transfers in event order."""
        for transfer in self.state_machine.active_transfers(self.direction):
            if self.stop_event.is_set():
                return
            self.log_info("Resuming transfer",
                          **self.transfer_context(transfer.transfer_id,
                                                  status=transfer.status.value,
                                                  retry_count=transfer.retry_count))
            self.drive(transfer)

    def process_batch(self, batch: EventBatch) -> bool:
        """
        Feed a batch through the state machine. The cursor advances only
        when every event in it has been handled.
        """
        for event in batch.events:
            if self.stop_event.is_set():
                return False

            outcome, transfer = self.state_machine.observe(event)
            self._count('observed' if outcome is LedgerOutcome.FRESH else 'duplicates')

            if transfer is None or transfer.status.is_terminal:
                continue

            transfer = self.drive(transfer)
            if not transfer.status.is_terminal and self.stop_event.is_set():
                return False

        self.reader.acknowledge(batch)
        return True

    # === Per-transfer driving ===

    def drive(self, transfer: Transfer) -> Transfer:
        """Advance a transfer until it is terminal, interrupted, or out of retries."""
        while not self.stop_event.is_set():
            try:
                transfer = self._step(transfer)
            except DispatchInterrupted:
                self.log_info("Leaving transfer in flight for restart",
                              **self.transfer_context(transfer.transfer_id,
                                                      status=transfer.status.value))
                return transfer
            except ReorganizationError as e:
                transfer = self.state_machine.flag(transfer.transfer_id, str(e))
                self._count('flagged')
                return transfer
            except InvalidTransitionError as e:
                self.log_warning("Transfer moved concurrently",
                                 **self.transfer_context(transfer.transfer_id, error=str(e)))
                return self.state_machine.transfers.get(transfer.transfer_id) or transfer
            except ChainError as e:
                transfer = self.state_machine.fail(transfer.transfer_id, e)
                self._count('failed_attempts')
                if transfer.status is TransferStatus.DEAD_LETTERED:
                    self._count('dead_lettered')
                    return transfer
                if self.stop_event.wait(self.backoff.delay(transfer.retry_count - 1)):
                    return transfer
                continue

            if transfer.status is TransferStatus.CONFIRMED:
                self._count('confirmed')
                return transfer
            if transfer.status is TransferStatus.FLAGGED:
                self._count('flagged')
                return transfer
            if transfer.status.is_terminal:
                return transfer
        return transfer

    def _step(self, transfer: Transfer) -> Transfer:
        transfer_id = transfer.transfer_id
        status = transfer.status

        if status in (TransferStatus.OBSERVED, TransferStatus.FAILED):
            if self.collector is not None and not self.collector.has_quorum(transfer):
                return self.state_machine.begin_collecting(transfer_id)
            return self.state_machine.begin_dispatch(transfer_id)

        if status is TransferStatus.COLLECTING_SIGNATURES:
            if self.collector is not None:
                self.collector.collect(transfer)
            return self.state_machine.begin_dispatch(transfer_id)

        if status is TransferStatus.DISPATCHING:
            if self.verify_events and not transfer.has_submission:
                if not self.reader.client.event_exists(transfer.originating_event):
                    return self.state_machine.flag(
                        transfer_id, "Originating event no longer on the canonical chain"
                    )
            receipt = self.dispatcher.dispatch(transfer, self.stop_event)
            return self.state_machine.confirm(transfer_id, receipt.tx_hash)

        return transfer

    # === Observability ===

    def _count(self, name: str) -> None:
        with self._counter_lock:
            self._counters[name] += 1

    def stats(self) -> Dict[str, object]:
        with self._counter_lock:
            counters = dict(self._counters)
        counters['cursor'] = self.reader.cursor
        return counters
