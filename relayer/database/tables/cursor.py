# relayer/database/tables/cursor.py

from sqlalchemy import Column, BigInteger, Enum, UniqueConstraint

from ...types import Direction
from ..base import DBBaseModel


class DBCursor(DBBaseModel):
    """High-water mark: last fully processed block per (chain, direction)."""
    __tablename__ = 'relay_cursors'

    chain_id = Column(BigInteger, nullable=False)
    direction = Column(Enum(Direction, native_enum=False), nullable=False)
    last_block = Column(BigInteger, nullable=False)

    __table_args__ = (
        UniqueConstraint('chain_id', 'direction', name='uq_cursor_chain_direction'),
    )

    def __repr__(self) -> str:
        return f"<DBCursor(chain={self.chain_id}, direction={self.direction.value}, last_block={self.last_block})>"
