# relayer/database/tables/signature.py

from sqlalchemy import Column, String, Text, UniqueConstraint

from ..base import DBBaseModel
from ..types import EvmAddressType


class DBTransferSignature(DBBaseModel):
    __tablename__ = 'transfer_signatures'

    transfer_id = Column(String(64), nullable=False, index=True)
    validator = Column(EvmAddressType(), nullable=False)
    signature = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint('transfer_id', 'validator', name='uq_signature_transfer_validator'),
    )
