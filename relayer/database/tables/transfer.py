# relayer/database/tables/transfer.py

from sqlalchemy import Column, String, Integer, BigInteger, Enum, Text, Index

from ...types import Direction, TransferStatus, Transfer
from ..base import DBBaseModel
from ..types import EvmAddressType, EvmHashType, Uint256Type


class DBTransfer(DBBaseModel):
    __tablename__ = 'transfers'

    transfer_id = Column(String(64), nullable=False, unique=True)
    direction = Column(Enum(Direction, native_enum=False), nullable=False, index=True)
    event_key = Column(String(160), nullable=False, unique=True)

    # Originating event
    source_chain_id = Column(BigInteger, nullable=False)
    dest_chain_id = Column(BigInteger, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    tx_hash = Column(EvmHashType(), nullable=False)
    log_index = Column(Integer, nullable=False)

    # Conservation fields, copied from the event and never modified
    user = Column(EvmAddressType(), nullable=False)
    destination = Column(EvmAddressType(), nullable=False)
    amount = Column(Uint256Type(), nullable=False)

    status = Column(Enum(TransferStatus, native_enum=False), nullable=False,
                    default=TransferStatus.OBSERVED, index=True)
    retry_count = Column(Integer, nullable=False, default=0)

    # Destination submission tracking
    submission_tx_hash = Column(EvmHashType(), nullable=True)
    submission_nonce = Column(BigInteger, nullable=True)
    submission_raw_tx = Column(Text, nullable=True)
    resulting_tx_hash = Column(EvmHashType(), nullable=True)

    failure_kind = Column(String(32), nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index('idx_transfer_direction_order', 'direction', 'block_number', 'log_index'),
    )

    def to_struct(self) -> Transfer:
        return Transfer(
            transfer_id=self.transfer_id,
            direction=self.direction,
            event_key=self.event_key,
            source_chain_id=self.source_chain_id,
            dest_chain_id=self.dest_chain_id,
            block_number=self.block_number,
            tx_hash=self.tx_hash,
            log_index=self.log_index,
            user=self.user,
            destination=self.destination,
            amount=self.amount,
            status=self.status,
            retry_count=self.retry_count or 0,
            submission_tx_hash=self.submission_tx_hash,
            submission_nonce=self.submission_nonce,
            submission_raw_tx=self.submission_raw_tx,
            resulting_tx_hash=self.resulting_tx_hash,
            failure_kind=self.failure_kind,
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def __repr__(self) -> str:
        return f"<DBTransfer(id={self.transfer_id[:10]}..., status={self.status.value})>"
