# relayer/types/errors.py

import enum
from typing import Optional


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    REJECTED = "rejected"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    REORGANIZED = "reorganized"


class RelayerError(Exception):
    """Base class for all relayer errors"""


class ConfigurationError(RelayerError):
    pass


class InvalidTransitionError(RelayerError):
    def __init__(self, transfer_id: str, current: Optional[str], target: str):
        self.transfer_id = transfer_id
        self.current = current
        self.target = target
        super().__init__(f"Illegal transition for {transfer_id}: {current} -> {target}")


class ChainError(RelayerError):
    """Errors raised at the chain boundary, classified for retry policy"""
    kind: FailureKind = FailureKind.TRANSIENT
    retryable: bool = True

    def __init__(self, message: str, chain: Optional[str] = None):
        self.chain = chain
        super().__init__(message)


class TransientInfraError(ChainError):
    kind = FailureKind.TRANSIENT
    retryable = True


class ChainRejectionError(ChainError):
    kind = FailureKind.REJECTED
    retryable = False


class InsufficientFundsError(ChainError):
    kind = FailureKind.INSUFFICIENT_FUNDS
    retryable = False


class ReorganizationError(ChainError):
    kind = FailureKind.REORGANIZED
    retryable = False


class QuorumError(TransientInfraError):
    """Not enough valid validator signatures yet"""


class DispatchInterrupted(RelayerError):
    """Shutdown requested while a submission was waiting; the transfer stays Dispatching"""
