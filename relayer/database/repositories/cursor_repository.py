# relayer/database/repositories/cursor_repository.py

from typing import Optional, List

from ...core.logging import log_with_context, DEBUG, ERROR
from ...types import Direction
from ..base_repository import BaseRepository
from ..tables import DBCursor


class CursorRepository(BaseRepository):
    """Persisted scan cursors, one row per (chain, direction)."""

    def __init__(self, db_manager):
        super().__init__(db_manager, DBCursor)

    def get_last_block(self, chain_id: int, direction: Direction) -> Optional[int]:
        try:
            with self.db_manager.get_session() as session:
                cursor = session.query(DBCursor).filter(
                    DBCursor.chain_id == chain_id,
                    DBCursor.direction == direction,
                ).one_or_none()
                return cursor.last_block if cursor else None
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error reading cursor",
                            chain=chain_id, direction=direction.value, error=str(e))
            raise

    def advance(self, chain_id: int, direction: Direction, block_number: int) -> int:
        """Move the cursor forward. Never moves it backwards; returns the stored value."""
        try:
            with self.db_manager.get_transaction() as session:
                cursor = session.query(DBCursor).filter(
                    DBCursor.chain_id == chain_id,
                    DBCursor.direction == direction,
                ).one_or_none()

                if cursor is None:
                    cursor = DBCursor(chain_id=chain_id, direction=direction, last_block=block_number)
                    session.add(cursor)
                elif block_number > cursor.last_block:
                    cursor.last_block = block_number

                stored = cursor.last_block

            log_with_context(self.logger, DEBUG, "Cursor advanced",
                            chain=chain_id, direction=direction.value, block_number=stored)
            return stored
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error advancing cursor",
                            chain=chain_id, direction=direction.value,
                            block_number=block_number, error=str(e))
            raise

    def list_cursors(self) -> List[DBCursor]:
        with self.db_manager.get_session() as session:
            return session.query(DBCursor).order_by(DBCursor.chain_id, DBCursor.direction).all()
