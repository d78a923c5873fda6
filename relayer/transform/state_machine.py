# relayer/transform/state_machine.py

from typing import Iterable, Optional, Tuple

from ..core.logging import LoggingMixin
from ..database.repositories import IdempotencyLedger, LedgerOutcome, TransferRepository
from ..types import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    ChainError,
    ChainEvent,
    EvmHash,
    FailureKind,
    InvalidTransitionError,
    Transfer,
    TransferId,
    TransferStatus,
)


class TransferStateMachine(LoggingMixin):
    """
    Owns every status change of a transfer.

    Observed -> [CollectingSignatures ->] Dispatching -> Confirmed
                                          Dispatching -> Failed -> Dispatching ...
                                          Failed/Dispatching -> DeadLettered
    Any active status -> Flagged when the source event disappears.

    Transitions are compare-and-set on the stored status; an illegal or
    lost transition raises InvalidTransitionError and changes nothing.
    """

    def __init__(self, ledger: IdempotencyLedger, transfers: TransferRepository,
                 max_retries: int):
        self.ledger = ledger
        self.transfers = transfers
        self.max_retries = max_retries

    def observe(self, event: ChainEvent) -> Tuple[LedgerOutcome, Optional[Transfer]]:
        """
        Record a source event and create its transfer in one transaction.

        Returns ALREADY_SEEN with the existing transfer when the identity
        was recorded before; nothing is created in that case.
        """
        identity = event.identity
        status = TransferStatus.OBSERVED

        outcome = self.ledger.record_if_new(
            identity,
            on_fresh=lambda session: self.transfers.insert_observed(session, event, status),
        )
        transfer = self.transfers.get(identity.transfer_id())

        if outcome is LedgerOutcome.FRESH:
            self.log_info("Transfer observed",
                          **self.transfer_context(identity.transfer_id(),
                                                  direction=event.direction.value,
                                                  chain=event.source_chain_id,
                                                  block_number=event.block_number,
                                                  tx_hash=event.tx_hash,
                                                  log_index=event.log_index,
                                                  status=status.value))
        else:
            self.log_debug("Duplicate event skipped",
                           **self.transfer_context(identity.transfer_id(),
                                                   tx_hash=event.tx_hash,
                                                   log_index=event.log_index))
        return outcome, transfer

    def begin_collecting(self, transfer_id: TransferId) -> Transfer:
        return self._transition(transfer_id, TransferStatus.COLLECTING_SIGNATURES)

    def begin_dispatch(self, transfer_id: TransferId) -> Transfer:
        return self._transition(transfer_id, TransferStatus.DISPATCHING)

    def confirm(self, transfer_id: TransferId, resulting_tx_hash: EvmHash) -> Transfer:
        transfer = self._transition(transfer_id, TransferStatus.CONFIRMED,
                                    resulting_tx_hash=resulting_tx_hash,
                                    failure_kind=None,
                                    last_error=None)
        self.log_info("Transfer confirmed",
                      **self.transfer_context(transfer_id, tx_hash=resulting_tx_hash,
                                              retry_count=transfer.retry_count))
        return transfer

    def fail(self, transfer_id: TransferId, error: ChainError) -> Transfer:
        """
        Record a failed attempt.

        Non-retryable errors dead-letter immediately. Retryable ones go to
        Failed until the retry limit is reached.
        """
        current = self._require(transfer_id)
        attempts = current.retry_count + 1

        if not error.retryable or attempts >= self.max_retries:
            return self.dead_letter(transfer_id, error, count_attempt=True)

        transfer = self._transition(transfer_id, TransferStatus.FAILED,
                                    increment_retry=True,
                                    failure_kind=error.kind.value,
                                    last_error=str(error))
        self.log_warning("Transfer attempt failed",
                         **self.transfer_context(transfer_id,
                                                 retry_count=transfer.retry_count,
                                                 error=str(error)))
        return transfer

    def dead_letter(self, transfer_id: TransferId, error: ChainError,
                    count_attempt: bool = False) -> Transfer:
        transfer = self._transition(transfer_id, TransferStatus.DEAD_LETTERED,
                                    increment_retry=count_attempt,
                                    failure_kind=error.kind.value,
                                    last_error=str(error))
        self.log_error("Transfer dead-lettered",
                       **self.transfer_context(transfer_id,
                                               retry_count=transfer.retry_count,
                                               error=str(error)))
        return transfer

    def flag(self, transfer_id: TransferId, reason: str) -> Transfer:
        transfer = self._transition(transfer_id, TransferStatus.FLAGGED,
                                    failure_kind=FailureKind.REORGANIZED.value,
                                    last_error=reason)
        self.log_error("Transfer flagged", **self.transfer_context(transfer_id, error=reason))
        return transfer

    def requeue(self, transfer_id: TransferId) -> Transfer:
        """Operator action: give a dead-lettered transfer a fresh retry budget."""
        transfer = self.transfers.transition(
            transfer_id,
            allowed_from={TransferStatus.DEAD_LETTERED},
            to_status=TransferStatus.FAILED,
            reset_retry=True,
        )
        if transfer is None:
            current = self.transfers.get(transfer_id)
            raise InvalidTransitionError(transfer_id,
                                         current.status.value if current else None,
                                         TransferStatus.FAILED.value)
        self.log_info("Transfer requeued", **self.transfer_context(transfer_id))
        return transfer

    def active_transfers(self, direction) -> Iterable[Transfer]:
        return self.transfers.list_active(direction, ACTIVE_STATUSES)

    def _require(self, transfer_id: TransferId) -> Transfer:
        transfer = self.transfers.get(transfer_id)
        if transfer is None:
            raise InvalidTransitionError(transfer_id, None, "any")
        return transfer

    def _transition(self, transfer_id: TransferId, target: TransferStatus,
                    increment_retry: bool = False, **fields) -> Transfer:
        allowed_from = ALLOWED_TRANSITIONS[target]
        transfer = self.transfers.transition(transfer_id, allowed_from, target,
                                             increment_retry=increment_retry, **fields)
        if transfer is None:
            current = self.transfers.get(transfer_id)
            raise InvalidTransitionError(transfer_id,
                                         current.status.value if current else None,
                                         target.value)
        return transfer
