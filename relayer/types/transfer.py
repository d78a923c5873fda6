# relayer/types/transfer.py

import enum
from datetime import datetime
from typing import Optional, Dict, FrozenSet

from msgspec import Struct

from .new import EvmAddress, EvmHash, TransferId, EventKey
from .events import Direction, EventIdentity


class TransferStatus(enum.Enum):
    OBSERVED = "Observed"
    COLLECTING_SIGNATURES = "CollectingSignatures"
    DISPATCHING = "Dispatching"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    DEAD_LETTERED = "DeadLettered"
    FLAGGED = "Flagged"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[TransferStatus] = frozenset({
    TransferStatus.CONFIRMED,
    TransferStatus.DEAD_LETTERED,
    TransferStatus.FLAGGED,
})

ACTIVE_STATUSES: FrozenSet[TransferStatus] = frozenset({
    TransferStatus.OBSERVED,
    TransferStatus.COLLECTING_SIGNATURES,
    TransferStatus.DISPATCHING,
    TransferStatus.FAILED,
})

# target -> statuses it may be entered from
ALLOWED_TRANSITIONS: Dict[TransferStatus, FrozenSet[TransferStatus]] = {
    TransferStatus.COLLECTING_SIGNATURES: frozenset({
        TransferStatus.OBSERVED,
        TransferStatus.FAILED,
    }),
    TransferStatus.DISPATCHING: frozenset({
        TransferStatus.OBSERVED,
        TransferStatus.COLLECTING_SIGNATURES,
        TransferStatus.FAILED,
    }),
    TransferStatus.CONFIRMED: frozenset({TransferStatus.DISPATCHING}),
    TransferStatus.FAILED: frozenset({
        TransferStatus.DISPATCHING,
        TransferStatus.COLLECTING_SIGNATURES,
    }),
    TransferStatus.DEAD_LETTERED: frozenset({
        TransferStatus.DISPATCHING,
        TransferStatus.COLLECTING_SIGNATURES,
        TransferStatus.FAILED,
    }),
    TransferStatus.FLAGGED: ACTIVE_STATUSES,
}


class Transfer(Struct):
    """Detached snapshot of a transfer record."""
    transfer_id: TransferId
    direction: Direction
    event_key: EventKey
    source_chain_id: int
    dest_chain_id: int
    block_number: int
    tx_hash: EvmHash
    log_index: int
    user: EvmAddress
    destination: EvmAddress
    amount: int
    status: TransferStatus
    retry_count: int = 0
    submission_tx_hash: Optional[EvmHash] = None
    submission_nonce: Optional[int] = None
    submission_raw_tx: Optional[str] = None
    resulting_tx_hash: Optional[EvmHash] = None
    failure_kind: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def originating_event(self) -> EventIdentity:
        return EventIdentity(
            chain_id=self.source_chain_id,
            block_number=self.block_number,
            tx_hash=self.tx_hash,
            log_index=self.log_index,
        )

    @property
    def has_submission(self) -> bool:
        return self.submission_tx_hash is not None
