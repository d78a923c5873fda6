# relayer/database/tables/__init__.py

from .cursor import DBCursor
from .ledger import DBProcessedEvent
from .transfer import DBTransfer
from .signature import DBTransferSignature

__all__ = [
    'DBCursor',
    'DBProcessedEvent',
    'DBTransfer',
    'DBTransferSignature',
]
