# relayer/cli/context.py

"""
CLI context: loads the configuration once and hands out wired services
to commands that need them.
"""

from pathlib import Path
from typing import Optional

from ..core.config import load_config
from ..core.container import RelayerContainer
from ..core.logging import RelayerLogger, log_with_context, INFO
from ..database.connection import DatabaseManager
from ..services.orchestrator import RelayOrchestrator
from ..transform.state_machine import TransferStateMachine
from ..types import RelayerConfig


class CLIContext:
    def __init__(self, config_path: Path):
        self.config_path = Path(config_path)
        self.logger = RelayerLogger.get_logger('cli.context')
        self._config: Optional[RelayerConfig] = None
        self._container: Optional[RelayerContainer] = None
        self._db_manager: Optional[DatabaseManager] = None

    @property
    def config(self) -> RelayerConfig:
        if self._config is None:
            self._config = load_config(self.config_path)
            log_with_context(self.logger, INFO, "CLI configuration loaded",
                             config_file=str(self.config_path))
        return self._config

    @property
    def container(self) -> RelayerContainer:
        if self._container is None:
            from .. import create_relayer
            self._container = create_relayer(self.config)
        return self._container

    @property
    def db_manager(self) -> DatabaseManager:
        if self._db_manager is None:
            self._db_manager = self.container.get(DatabaseManager)
        return self._db_manager

    @property
    def state_machine(self) -> TransferStateMachine:
        return self.container.get(TransferStateMachine)

    @property
    def orchestrator(self) -> RelayOrchestrator:
        return self.container.get(RelayOrchestrator)

    def close(self) -> None:
        if self._db_manager is not None:
            self._db_manager.shutdown()
