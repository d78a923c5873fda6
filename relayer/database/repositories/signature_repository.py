# relayer/database/repositories/signature_repository.py

from typing import Dict

from sqlalchemy.exc import IntegrityError

from ...core.logging import log_with_context, DEBUG
from ...types import EvmAddress, TransferId
from ..base_repository import BaseRepository
from ..tables import DBTransferSignature


class SignatureRepository(BaseRepository):
    """Validator signatures collected for quorum-gated transfers."""

    def __init__(self, db_manager):
        super().__init__(db_manager, DBTransferSignature)

    def add(self, transfer_id: TransferId, validator: EvmAddress, signature: str) -> bool:
        """Store a signature. Returns False if this validator already signed."""
        try:
            with self.db_manager.get_transaction() as session:
                exists = session.query(DBTransferSignature).filter(
                    DBTransferSignature.transfer_id == transfer_id,
                    DBTransferSignature.validator == validator,
                ).first()
                if exists:
                    return False
                session.add(DBTransferSignature(
                    transfer_id=transfer_id, validator=validator, signature=signature,
                ))
            log_with_context(self.logger, DEBUG, "Signature stored",
                            transfer_id=transfer_id, validator=validator)
            return True
        except IntegrityError:
            return False

    def signatures_for(self, transfer_id: TransferId) -> Dict[EvmAddress, str]:
        with self.db_manager.get_session() as session:
            rows = session.query(DBTransferSignature).filter(
                DBTransferSignature.transfer_id == transfer_id
            ).all()
            return {row.validator: row.signature for row in rows}
