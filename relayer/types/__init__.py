# relayer/types/__init__.py

from .new import (
    EvmAddress,
    EvmHash,
    TransferId,
    EventKey,
)

from .events import (
    MAX_UINT256,
    EventKind,
    Direction,
    BridgeAction,
    EventIdentity,
    ChainEvent,
)

from .transfer import (
    TransferStatus,
    TERMINAL_STATUSES,
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    Transfer,
)

from .chain import (
    SubmittedTx,
    SignedSubmission,
    TxReceipt,
)

from .errors import (
    FailureKind,
    RelayerError,
    ConfigurationError,
    InvalidTransitionError,
    ChainError,
    TransientInfraError,
    ChainRejectionError,
    InsufficientFundsError,
    ReorganizationError,
    QuorumError,
    DispatchInterrupted,
)

from .config import (
    DatabaseConfig,
    ChainConfig,
    RetryConfig,
    DispatchConfig,
    QuorumConfig,
    LoggingConfig,
    RelayerConfig,
)
