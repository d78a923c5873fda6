# relayer/types/chain.py

from typing import Optional

from msgspec import Struct

from .new import EvmHash


class SubmittedTx(Struct, frozen=True):
    tx_hash: EvmHash
    nonce: int


class SignedSubmission(Struct, frozen=True):
    """A signed destination call whose hash is known before broadcast."""
    tx_hash: EvmHash
    nonce: int
    raw_transaction: bytes


class TxReceipt(Struct, frozen=True):
    tx_hash: EvmHash
    block_number: int
    status: int  # 1 success, 0 reverted
    gas_used: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1
