# relayer/database/repositories/transfer_repository.py

from typing import Dict, Iterable, List, Optional

from sqlalchemy import update, func
from sqlalchemy.orm import Session

from ...core.logging import log_with_context, DEBUG, ERROR
from ...types import ChainEvent, Direction, Transfer, TransferStatus, TransferId, EvmHash
from ..base import utc_now
from ..base_repository import BaseRepository
from ..tables import DBTransfer


class TransferRepository(BaseRepository):
    """
    Transfer records. Rows are never deleted.

    All status changes go through `transition`, a compare-and-set UPDATE
    guarded on the current status, so two writers can never both move the
    same transfer.
    """

    def __init__(self, db_manager):
        super().__init__(db_manager, DBTransfer)

    def insert_observed(self, session: Session, event: ChainEvent, status: TransferStatus) -> DBTransfer:
        identity = event.identity
        return self.create(
            session,
            transfer_id=identity.transfer_id(),
            direction=event.direction,
            event_key=identity.key,
            source_chain_id=event.source_chain_id,
            dest_chain_id=event.dest_chain_id,
            block_number=event.block_number,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            user=event.user,
            destination=event.destination,
            amount=event.amount,
            status=status,
            retry_count=0,
        )

    def get(self, transfer_id: TransferId) -> Optional[Transfer]:
        try:
            with self.db_manager.get_session() as session:
                row = session.query(DBTransfer).filter(
                    DBTransfer.transfer_id == transfer_id
                ).one_or_none()
                return row.to_struct() if row else None
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error getting transfer",
                            transfer_id=transfer_id, error=str(e))
            raise

    def transition(self, transfer_id: TransferId, allowed_from: Iterable[TransferStatus],
                   to_status: TransferStatus, increment_retry: bool = False,
                   reset_retry: bool = False, **fields) -> Optional[Transfer]:
        """Compare-and-set status change. Returns the updated transfer, or None if the guard failed."""
        values = dict(fields)
        values['status'] = to_status
        values['updated_at'] = utc_now()
        if increment_retry:
            values['retry_count'] = DBTransfer.retry_count + 1
        elif reset_retry:
            values['retry_count'] = 0

        try:
            with self.db_manager.get_transaction() as session:
                result = session.execute(
                    update(DBTransfer)
                    .where(DBTransfer.transfer_id == transfer_id)
                    .where(DBTransfer.status.in_(list(allowed_from)))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None

                row = session.query(DBTransfer).filter(
                    DBTransfer.transfer_id == transfer_id
                ).one()
                transfer = row.to_struct()

            log_with_context(self.logger, DEBUG, "Transfer transitioned",
                            transfer_id=transfer_id,
                            status=to_status.value,
                            retry_count=transfer.retry_count)
            return transfer
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error transitioning transfer",
                            transfer_id=transfer_id, status=to_status.value, error=str(e))
            raise

    def record_submission(self, transfer_id: TransferId, tx_hash: EvmHash, nonce: int,
                          raw_tx: Optional[str] = None, replacing: Optional[EvmHash] = None) -> bool:
        """
        Claim the transfer's destination transaction. Only legal while Dispatching.

        Compare-and-set on the recorded submission: a first claim requires
        none to be recorded, a replacement requires `replacing` to still be
        the recorded one. Returns False if another writer got there first.
        """
        if replacing is None:
            prior_guard = DBTransfer.submission_tx_hash.is_(None)
        else:
            prior_guard = DBTransfer.submission_tx_hash == replacing

        try:
            with self.db_manager.get_transaction() as session:
                result = session.execute(
                    update(DBTransfer)
                    .where(DBTransfer.transfer_id == transfer_id)
                    .where(DBTransfer.status == TransferStatus.DISPATCHING)
                    .where(prior_guard)
                    .values(submission_tx_hash=tx_hash, submission_nonce=nonce,
                            submission_raw_tx=raw_tx, updated_at=utc_now())
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error recording submission",
                            transfer_id=transfer_id, tx_hash=tx_hash, error=str(e))
            raise

    def list_active(self, direction: Direction, statuses: Iterable[TransferStatus]) -> List[Transfer]:
        with self.db_manager.get_session() as session:
            rows = session.query(DBTransfer).filter(
                DBTransfer.direction == direction,
                DBTransfer.status.in_(list(statuses)),
            ).order_by(DBTransfer.block_number, DBTransfer.log_index).all()
            return [row.to_struct() for row in rows]

    def list_by_status(self, statuses: Iterable[TransferStatus], limit: int = 100) -> List[Transfer]:
        with self.db_manager.get_session() as session:
            rows = session.query(DBTransfer).filter(
                DBTransfer.status.in_(list(statuses))
            ).order_by(DBTransfer.updated_at).limit(limit).all()
            return [row.to_struct() for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        with self.db_manager.get_session() as session:
            rows = session.query(DBTransfer.status, func.count(DBTransfer.id)).group_by(DBTransfer.status).all()
        counts = {status.value: 0 for status in TransferStatus}
        for status, count in rows:
            counts[status.value] = count
        return counts
