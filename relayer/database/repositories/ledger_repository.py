# relayer/database/repositories/ledger_repository.py

import enum
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...core.logging import log_with_context, DEBUG, ERROR
from ...types import EventIdentity
from ..base_repository import BaseRepository
from ..tables import DBProcessedEvent


class LedgerOutcome(enum.Enum):
    FRESH = "fresh"
    ALREADY_SEEN = "already_seen"


class IdempotencyLedger(BaseRepository):
    """
    Durable record of source events that already produced a transfer.

    The unique constraint on event_key is the arbiter: concurrent callers
    racing on the same identity both attempt the insert and exactly one
    commits. Entries are never evicted.
    """

    def __init__(self, db_manager):
        super().__init__(db_manager, DBProcessedEvent)

    def has_seen(self, identity: EventIdentity) -> bool:
        with self.db_manager.get_session() as session:
            return self._exists(session, identity)

    def record_if_new(self, identity: EventIdentity,
                      on_fresh: Optional[Callable[[Session], None]] = None) -> LedgerOutcome:
        """
        Atomically check-and-record an event identity.

        `on_fresh` runs inside the same database transaction as the ledger
        insert, so whatever it writes commits together with the entry or
        not at all.
        """
        try:
            with self.db_manager.get_transaction() as session:
                if self._exists(session, identity):
                    return LedgerOutcome.ALREADY_SEEN

                session.add(DBProcessedEvent(
                    event_key=identity.key,
                    chain_id=identity.chain_id,
                    block_number=identity.block_number,
                    tx_hash=identity.tx_hash,
                    log_index=identity.log_index,
                    transfer_id=identity.transfer_id(),
                ))
                session.flush()

                if on_fresh is not None:
                    on_fresh(session)

            log_with_context(self.logger, DEBUG, "Event recorded",
                            chain=identity.chain_id,
                            block_number=identity.block_number,
                            tx_hash=identity.tx_hash,
                            log_index=identity.log_index)
            return LedgerOutcome.FRESH

        except IntegrityError:
            # Lost the race against another writer for the same identity
            log_with_context(self.logger, DEBUG, "Event recorded concurrently",
                            chain=identity.chain_id,
                            tx_hash=identity.tx_hash,
                            log_index=identity.log_index)
            return LedgerOutcome.ALREADY_SEEN
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error recording event",
                            chain=identity.chain_id,
                            tx_hash=identity.tx_hash,
                            log_index=identity.log_index,
                            error=str(e))
            raise

    def _exists(self, session: Session, identity: EventIdentity) -> bool:
        return session.query(
            session.query(DBProcessedEvent).filter(
                DBProcessedEvent.event_key == identity.key
            ).exists()
        ).scalar()

    def total(self) -> int:
        with self.db_manager.get_session() as session:
            return self.count(session)
