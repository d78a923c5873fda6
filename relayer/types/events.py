# relayer/types/events.py

import enum
import hashlib

import msgspec
from msgspec import Struct

from .new import EvmAddress, EvmHash, TransferId, EventKey


MAX_UINT256 = 2**256 - 1


class EventKind(enum.Enum):
    LOCKED = "Locked"
    BURNED = "Burned"

    @property
    def abi_name(self) -> str:
        return {EventKind.LOCKED: "TokenLocked", EventKind.BURNED: "TokenBurned"}[self]


class Direction(enum.Enum):
    LOCK_TO_MINT = "LockToMint"
    BURN_TO_RELEASE = "BurnToRelease"

    @classmethod
    def for_event(cls, kind: EventKind) -> 'Direction':
        return cls.LOCK_TO_MINT if kind is EventKind.LOCKED else cls.BURN_TO_RELEASE

    @property
    def event_kind(self) -> EventKind:
        return EventKind.LOCKED if self is Direction.LOCK_TO_MINT else EventKind.BURNED

    @property
    def action(self) -> 'BridgeAction':
        return BridgeAction.MINT if self is Direction.LOCK_TO_MINT else BridgeAction.RELEASE


class BridgeAction(enum.Enum):
    MINT = "mint"
    RELEASE = "release"

    @property
    def function_name(self) -> str:
        return {BridgeAction.MINT: "mintWrapped", BridgeAction.RELEASE: "release"}[self]


class EventIdentity(Struct, frozen=True):
    chain_id: int
    block_number: int
    tx_hash: EvmHash
    log_index: int

    @property
    def key(self) -> EventKey:
        return EventKey(f"{self.chain_id}:{self.block_number}:{self.tx_hash.lower()}:{self.log_index}")

    @property
    def sort_key(self):
        return (self.block_number, self.log_index)

    def transfer_id(self) -> TransferId:
        content_bytes = msgspec.msgpack.encode(
            [self.chain_id, self.block_number, self.tx_hash.lower(), self.log_index]
        )
        return TransferId(hashlib.sha256(content_bytes).hexdigest())


class ChainEvent(Struct, frozen=True):
    """A decoded bridge event. Never mutated once produced by a reader."""
    kind: EventKind
    user: EvmAddress
    amount: int
    destination: EvmAddress
    source_chain_id: int
    dest_chain_id: int
    block_number: int
    tx_hash: EvmHash
    log_index: int

    def __post_init__(self) -> None:
        if self.amount <= 0:
            raise ValueError(f"Event amount must be positive, got {self.amount}")
        if self.amount > MAX_UINT256:
            raise ValueError(f"Event amount exceeds uint256: {self.amount}")
        if self.block_number < 0 or self.log_index < 0:
            raise ValueError("Block number and log index must be non-negative")

    @property
    def identity(self) -> EventIdentity:
        return EventIdentity(
            chain_id=self.source_chain_id,
            block_number=self.block_number,
            tx_hash=self.tx_hash,
            log_index=self.log_index,
        )

    @property
    def direction(self) -> Direction:
        return Direction.for_event(self.kind)
