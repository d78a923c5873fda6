# relayer/database/repositories/__init__.py

from .cursor_repository import CursorRepository
from .ledger_repository import IdempotencyLedger, LedgerOutcome
from .transfer_repository import TransferRepository
from .signature_repository import SignatureRepository

__all__ = [
    'CursorRepository',
    'IdempotencyLedger',
    'LedgerOutcome',
    'TransferRepository',
    'SignatureRepository',
]
