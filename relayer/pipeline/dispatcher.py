# relayer/pipeline/dispatcher.py

import threading
import time
from typing import Callable, Optional

from ..clients.interfaces import ChainClientInterface
from ..core.logging import LoggingMixin
from ..database.repositories import TransferRepository
from ..types import (
    ChainConfig,
    ChainError,
    ChainRejectionError,
    DispatchConfig,
    DispatchInterrupted,
    EvmHash,
    InvalidTransitionError,
    ReorganizationError,
    SignedSubmission,
    Transfer,
    TransferStatus,
    TransientInfraError,
    TxReceipt,
)
from .admission import AdmissionController
from .nonce_manager import NonceManager


class ActionDispatcher(LoggingMixin):
    """
    Executes the destination action of a Dispatching transfer.

    Before anything is submitted the prior submission recorded on the
    transfer is examined, so a retry or a restart never puts a second
    transaction for the same transfer on chain:

    - included and succeeded, or still pending: wait for it
    - unknown and its nonce not yet consumed: re-broadcast the same signed bytes
    - reverted: sign a new one
    - unknown but its nonce consumed: re-check a bounded number of times,
      then give up for manual reconciliation without signing again

    Recording a submission is compare-and-set, so when two workers race on
    the same transfer only one transaction is ever broadcast; the loser
    follows the winner's.

    The signed transaction is persisted before it is broadcast.
    """

    def __init__(self,
                 client: ChainClientInterface,
                 chain: ChainConfig,
                 transfers: TransferRepository,
                 nonces: NonceManager,
                 admission: AdmissionController,
                 config: DispatchConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.chain = chain
        self.transfers = transfers
        self.nonces = nonces
        self.admission = admission
        self.config = config
        self.clock = clock

    def dispatch(self, transfer: Transfer, stop_event: threading.Event) -> TxReceipt:
        """
        Submit (or resume) the transfer's destination call and wait for it
        to reach confirmation depth.

        Raises:
            ChainError subclasses classified for the retry policy
            ReorganizationError: the prior submission's nonce was consumed
                but its outcome never became visible
            DispatchInterrupted: shutdown requested while waiting
        """
        if transfer.status is not TransferStatus.DISPATCHING:
            raise InvalidTransitionError(transfer.transfer_id, transfer.status.value,
                                         TransferStatus.DISPATCHING.value)

        with self.admission.slot(self.chain.chain_id, stop_event) as admitted:
            if not admitted:
                raise DispatchInterrupted(f"Shutdown before admission of {transfer.transfer_id}")

            tx_hash = self._ensure_submitted(transfer, stop_event)
            return self._await_confirmation(transfer, tx_hash, stop_event)

    def _ensure_submitted(self, transfer: Transfer, stop_event: threading.Event) -> EvmHash:
        if not transfer.has_submission:
            return self._submit_new(transfer, stop_event)

        prior = transfer.submission_tx_hash
        context = self.transfer_context(transfer.transfer_id, tx_hash=prior, chain=self.chain.name)
        rechecks = 0

        while True:
            receipt = self.client.get_receipt(prior)
            if receipt is not None:
                if receipt.succeeded:
                    self.log_info("Prior submission already included", **context)
                    return prior
                self.log_warning("Prior submission reverted, submitting again", **context)
                return self._submit_new(transfer, stop_event, replacing=prior)

            if self.client.is_pending(prior):
                self.log_info("Prior submission still pending, waiting", **context)
                return prior

            confirmed = self.client.get_confirmed_nonce()
            if confirmed <= transfer.submission_nonce:
                if transfer.submission_raw_tx:
                    self.log_info("Prior submission unknown to node, re-broadcasting", **context)
                    self._broadcast(SignedSubmission(
                        tx_hash=prior,
                        nonce=transfer.submission_nonce,
                        raw_transaction=bytes.fromhex(transfer.submission_raw_tx),
                    ))
                    return prior
                # Nothing to re-broadcast; a new signing competes for the same unused nonce
                self.log_warning("Prior submission lost before broadcast, submitting again", **context)
                return self._submit_new(transfer, stop_event, replacing=prior)

            # The nonce is spent, possibly by this very transaction behind a lagging node
            if rechecks >= self.config.unresolved_rechecks:
                raise ReorganizationError(
                    f"Nonce {transfer.submission_nonce} consumed but {prior} has no receipt "
                    f"after {rechecks} re-checks",
                    chain=self.chain.name,
                )
            rechecks += 1
            self.log_warning("Prior submission nonce consumed without receipt, re-checking",
                             retry_count=rechecks, **context)
            if stop_event.wait(self.config.receipt_poll_interval):
                raise DispatchInterrupted(f"Shutdown while resolving {prior}")

    def _submit_new(self, transfer: Transfer, stop_event: threading.Event,
                    replacing: Optional[EvmHash] = None) -> EvmHash:
        nonce = self.nonces.next_nonce()
        try:
            signed = self.client.prepare_submission(
                transfer.direction.action,
                transfer.destination,
                transfer.amount,
                nonce,
            )
        except ChainError:
            self.nonces.reset()
            raise

        recorded = self.transfers.record_submission(
            transfer.transfer_id, signed.tx_hash, signed.nonce, signed.raw_transaction.hex(),
            replacing=replacing,
        )
        if not recorded:
            # Another worker claimed the submission; the signed transaction is dropped unsent
            self.nonces.reset()
            current = self.transfers.get(transfer.transfer_id)
            if current is None or current.status is not TransferStatus.DISPATCHING:
                raise InvalidTransitionError(transfer.transfer_id,
                                             current.status.value if current else None,
                                             TransferStatus.DISPATCHING.value)
            self.log_info("Submission claimed by another worker, following it",
                          **self.transfer_context(transfer.transfer_id,
                                                  chain=self.chain.name,
                                                  tx_hash=current.submission_tx_hash))
            return self._ensure_submitted(current, stop_event)

        self._broadcast(signed)
        self.log_info("Destination action submitted",
                      **self.transfer_context(transfer.transfer_id,
                                              chain=self.chain.name,
                                              tx_hash=signed.tx_hash,
                                              nonce=signed.nonce,
                                              retry_count=transfer.retry_count))
        return signed.tx_hash

    def _broadcast(self, signed: SignedSubmission) -> None:
        try:
            self.client.broadcast(signed)
        except ChainError:
            self.nonces.reset()
            raise

    def _await_confirmation(self, transfer: Transfer, tx_hash: EvmHash,
                            stop_event: threading.Event) -> TxReceipt:
        deadline = self.clock() + self.config.confirmation_timeout

        while True:
            receipt = self.client.get_receipt(tx_hash)
            if receipt is not None:
                if not receipt.succeeded:
                    raise ChainRejectionError(
                        f"Destination call {tx_hash} reverted in block {receipt.block_number}",
                        chain=self.chain.name,
                    )
                depth = self.client.get_latest_block_number() - receipt.block_number
                if depth >= self.chain.confirmation_depth:
                    return receipt

            if self.clock() >= deadline:
                raise TransientInfraError(
                    f"Destination call {tx_hash} not confirmed within "
                    f"{self.config.confirmation_timeout}s",
                    chain=self.chain.name,
                )

            if stop_event.wait(self.config.receipt_poll_interval):
                raise DispatchInterrupted(f"Shutdown while awaiting {tx_hash}")
