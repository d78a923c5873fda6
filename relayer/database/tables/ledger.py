# relayer/database/tables/ledger.py

from sqlalchemy import Column, String, Integer, BigInteger, Index

from ..base import DBBaseModel
from ..types import EvmHashType


class DBProcessedEvent(DBBaseModel):
    """Idempotency ledger entry. Permanent, one per relayed source event."""
    __tablename__ = 'processed_events'

    event_key = Column(String(160), nullable=False, unique=True)
    chain_id = Column(BigInteger, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    tx_hash = Column(EvmHashType(), nullable=False)
    log_index = Column(Integer, nullable=False)
    transfer_id = Column(String(64), nullable=True)

    __table_args__ = (
        Index('idx_processed_chain_block', 'chain_id', 'block_number'),
    )

    def __repr__(self) -> str:
        return f"<DBProcessedEvent(key={self.event_key})>"
