# relayer/database/base.py

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, text
from sqlalchemy.orm import declarative_base, declarative_mixin


RelayerBase = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@declarative_mixin
class TimestampMixin:
    created_at = Column(
        DateTime(timezone=True), 
        nullable=False, 
        default=utc_now,
        server_default=text('CURRENT_TIMESTAMP')
    )
    
    updated_at = Column(
        DateTime(timezone=True), 
        nullable=False, 
        default=utc_now,
        server_default=text('CURRENT_TIMESTAMP'),
        onupdate=utc_now
    )


class DBBaseModel(RelayerBase, TimestampMixin):
    __abstract__ = True
    
    id = Column(Integer, primary_key=True, autoincrement=True)
