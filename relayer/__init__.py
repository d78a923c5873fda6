# relayer/__init__.py

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from .core.container import RelayerContainer
from .core.logging import RelayerLogger, log_with_context
from .clients.registry import ChainClients
from .database.connection import DatabaseManager
from .services.orchestrator import RelayOrchestrator
from .services.quorum import SignatureCollector, ValidatorSigner
from .transform.state_machine import TransferStateMachine
from .types import ConfigurationError, RelayerConfig


def create_relayer(config: RelayerConfig, env_vars: Optional[Dict[str, str]] = None,
                   clients: Optional[ChainClients] = None) -> RelayerContainer:
    env = env_vars if env_vars is not None else os.environ
    _configure_logging_early(config, env)

    logger = RelayerLogger.get_logger('core.init')
    log_with_context(logger, logging.INFO, "Creating relayer",
                     source_chain=config.source.name,
                     destination_chain=config.destination.name,
                     quorum=config.quorum is not None)

    container = RelayerContainer(config)
    _register_services(container, clients)

    logger.info("Relayer created successfully")
    return container


def _configure_logging_early(config: RelayerConfig, env: Dict[str, str]) -> None:
    log_dir_env = env.get("RELAYER_LOG_DIR") or config.logging.log_dir
    log_dir = Path(log_dir_env) if log_dir_env else Path.cwd() / "logs"

    log_level = env.get("RELAYER_LOG_LEVEL", config.logging.level)
    file_enabled = env.get("RELAYER_LOG_FILE", str(config.logging.file_enabled)).lower() == "true"
    structured_format = env.get("RELAYER_LOG_STRUCTURED", str(config.logging.structured)).lower() == "true"

    RelayerLogger.configure(
        log_dir=log_dir,
        log_level=log_level,
        console_enabled=True,
        file_enabled=file_enabled,
        structured_format=structured_format,
    )


def _register_services(container: RelayerContainer, clients: Optional[ChainClients]) -> None:
    logger = RelayerLogger.get_logger('core.services')
    logger.info("Registering services in container")

    container.register_factory(DatabaseManager, _create_database_manager)

    if clients is not None:
        container.register_instance(ChainClients, clients)
    else:
        container.register_factory(ChainClients, _create_chain_clients)

    container.register_factory(SignatureCollector, _create_signature_collector)
    container.register_factory(TransferStateMachine, _create_state_machine)
    container.register_factory(RelayOrchestrator, _create_orchestrator)

    logger.info("Service registration completed")


def _create_database_manager(container: RelayerContainer) -> DatabaseManager:
    db_manager = DatabaseManager(container.config.database)
    db_manager.initialize()
    db_manager.create_schema()
    return db_manager


def _create_chain_clients(container: RelayerContainer) -> ChainClients:
    from .clients.web3_client import Web3ChainClient

    config = container.config
    private_key = config.relayer_private_key
    if not private_key:
        RelayerLogger.get_logger('core.factory').warning(
            "RELAYER_PRIVATE_KEY not set; pipelines can observe but not submit"
        )

    return ChainClients(
        source=Web3ChainClient(config.source, config.destination.chain_id, private_key),
        destination=Web3ChainClient(config.destination, config.source.chain_id, private_key),
    )


def _create_signature_collector(container: RelayerContainer) -> Optional[SignatureCollector]:
    config = container.config
    if config.quorum is None:
        return None
    if not config.validator_keys:
        raise ConfigurationError("Quorum configured but RELAYER_VALIDATOR_KEYS is empty")

    db_manager = container.get(DatabaseManager)
    signers = [ValidatorSigner(key) for key in config.validator_keys]
    return SignatureCollector(config.quorum, signers, db_manager.get_signature_repo())


def _create_state_machine(container: RelayerContainer) -> TransferStateMachine:
    db_manager = container.get(DatabaseManager)
    return TransferStateMachine(
        db_manager.get_ledger(),
        db_manager.get_transfer_repo(),
        max_retries=container.config.retry.max_retries,
    )


def _create_orchestrator(container: RelayerContainer) -> RelayOrchestrator:
    return RelayOrchestrator(
        config=container.config,
        db_manager=container.get(DatabaseManager),
        clients=container.get(ChainClients),
        collector=container.get(SignatureCollector),
        state_machine=container.get(TransferStateMachine),
    )
