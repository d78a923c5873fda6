"""
Interfaces for ledger access.

One implementation per chain. The relay core only talks to a ledger
through this surface: the bridge contract's append-only event log and
its two relayer-gated entry points.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..types import (
    BridgeAction,
    ChainEvent,
    EventIdentity,
    EventKind,
    EvmAddress,
    EvmHash,
    SignedSubmission,
    SubmittedTx,
    TxReceipt,
)


class ChainClientInterface(ABC):
    """Interface for bridge-contract access on a single chain.

    Implementations raise the relayer error taxonomy:
    TransientInfraError for endpoint trouble and nonce contention,
    ChainRejectionError for reverts, InsufficientFundsError when the
    relayer cannot pay for a submission.
    """

    name: str
    chain_id: int

    @property
    @abstractmethod
    def relayer_address(self) -> EvmAddress:
        """Address of the signing credential used for submissions."""
        pass

    @abstractmethod
    def get_latest_block_number(self) -> int:
        pass

    @abstractmethod
    def get_events(self, kind: EventKind, from_block: int, to_block: int) -> List[ChainEvent]:
        """
        Decoded bridge events of one kind in [from_block, to_block].

        Returns:
            Events ordered by (block_number, log_index)
        """
        pass

    @abstractmethod
    def event_exists(self, identity: EventIdentity) -> bool:
        """Whether the event is still part of the canonical chain."""
        pass

    @abstractmethod
    def prepare_submission(self, action: BridgeAction, recipient: EvmAddress, amount: int,
                           nonce: int) -> SignedSubmission:
        """
        Build and sign `mintWrapped`/`release` with an explicit nonce.

        Nothing is broadcast. The returned hash can be persisted before
        the transaction exists anywhere but in this process.
        """
        pass

    @abstractmethod
    def broadcast(self, signed: SignedSubmission) -> SubmittedTx:
        pass

    @abstractmethod
    def get_receipt(self, tx_hash: EvmHash) -> Optional[TxReceipt]:
        """Receipt of an included transaction, or None if not included."""
        pass

    @abstractmethod
    def is_pending(self, tx_hash: EvmHash) -> bool:
        """Whether the node knows the transaction but it is not yet included."""
        pass

    @abstractmethod
    def get_confirmed_nonce(self) -> int:
        """Number of relayer transactions included in the latest block."""
        pass

    @abstractmethod
    def get_pending_nonce(self) -> int:
        """Next nonce including transactions still in the mempool."""
        pass

    def get_authorized_relayer(self) -> Optional[EvmAddress]:
        """Relayer identity configured on the bridge contract, when readable."""
        return None
