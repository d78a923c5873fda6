# relayer/types/config.py

from typing import List, Optional

from msgspec import Struct, field

from .new import EvmAddress


class DatabaseConfig(Struct):
    url: str
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False


class ChainConfig(Struct):
    name: str
    chain_id: int
    rpc_url: str
    bridge_address: EvmAddress
    genesis_block: int = 0
    confirmation_depth: int = 5
    max_batch_blocks: int = 500
    poll_interval: float = 2.0
    max_in_flight: int = 1
    request_timeout: int = 30
    gas_limit: Optional[int] = None
    poa: bool = False


class RetryConfig(Struct):
    max_retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.25


class DispatchConfig(Struct):
    receipt_poll_interval: float = 2.0
    confirmation_timeout: float = 300.0
    verify_event_before_dispatch: bool = True
    unresolved_rechecks: int = 10


class QuorumConfig(Struct):
    threshold: int
    validators: List[EvmAddress]


class LoggingConfig(Struct):
    level: str = "INFO"
    log_dir: Optional[str] = None
    file_enabled: bool = False
    structured: bool = True


class RelayerConfig(Struct):
    source: ChainConfig
    destination: ChainConfig
    database: DatabaseConfig
    retry: RetryConfig = field(default_factory=RetryConfig)
    read_retry: RetryConfig = field(default_factory=lambda: RetryConfig(base_delay=1.0, max_delay=30.0))
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    quorum: Optional[QuorumConfig] = None
    relayer_private_key: Optional[str] = None
    validator_keys: List[str] = field(default_factory=list)
