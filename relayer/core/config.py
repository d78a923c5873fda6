# relayer/core/config.py

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union

import msgspec
import yaml

from ..types import RelayerConfig, ConfigurationError
from .logging import RelayerLogger, log_with_context, INFO


def load_config(config_path: Union[str, Path], env_vars: Optional[Dict[str, str]] = None) -> RelayerConfig:
    """
    Load the relayer configuration once at startup.

    The YAML file carries chain endpoints, bridge addresses and tuning.
    Secrets come from the environment (optionally via a .env file):
    RELAYER_PRIVATE_KEY, RELAYER_DATABASE_URL, RELAYER_VALIDATOR_KEYS.
    """
    logger = RelayerLogger.get_logger('core.config')

    if env_vars is None:
        from dotenv import load_dotenv
        load_dotenv()
        env_vars = os.environ
    env = env_vars

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    log_with_context(logger, INFO, "Loading relayer configuration", config_file=str(config_path))
    return config_from_dict(raw, env)


def config_from_dict(raw: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> RelayerConfig:
    env = env or {}
    data = dict(raw)

    if env.get("RELAYER_DATABASE_URL"):
        database = dict(data.get("database") or {})
        database["url"] = env["RELAYER_DATABASE_URL"]
        data["database"] = database

    if env.get("RELAYER_PRIVATE_KEY"):
        data["relayer_private_key"] = env["RELAYER_PRIVATE_KEY"]

    if env.get("RELAYER_VALIDATOR_KEYS"):
        data["validator_keys"] = [
            key.strip() for key in env["RELAYER_VALIDATOR_KEYS"].split(",") if key.strip()
        ]

    try:
        config = msgspec.convert(data, type=RelayerConfig)
    except msgspec.ValidationError as e:
        raise ConfigurationError(f"Invalid relayer configuration: {e}") from e

    validate_config(config)
    return config


def validate_config(config: RelayerConfig) -> None:
    if config.source.chain_id == config.destination.chain_id:
        raise ConfigurationError("Source and destination chains must have distinct chain ids")

    for chain in (config.source, config.destination):
        if chain.confirmation_depth < 0:
            raise ConfigurationError(f"{chain.name}: confirmation_depth must be >= 0")
        if chain.max_batch_blocks < 1:
            raise ConfigurationError(f"{chain.name}: max_batch_blocks must be >= 1")
        if chain.max_in_flight < 1:
            raise ConfigurationError(f"{chain.name}: max_in_flight must be >= 1")
        if chain.genesis_block < 0:
            raise ConfigurationError(f"{chain.name}: genesis_block must be >= 0")

    if config.dispatch.unresolved_rechecks < 0:
        raise ConfigurationError("dispatch.unresolved_rechecks must be >= 0")

    if config.retry.max_retries < 1:
        raise ConfigurationError("retry.max_retries must be >= 1")

    for retry in (config.retry, config.read_retry):
        if retry.base_delay < 0 or retry.max_delay < retry.base_delay:
            raise ConfigurationError("retry delays must satisfy 0 <= base_delay <= max_delay")
        if not 0 <= retry.jitter <= 1:
            raise ConfigurationError("retry jitter must be between 0 and 1")

    if config.quorum is not None:
        validators = {v.lower() for v in config.quorum.validators}
        if len(validators) != len(config.quorum.validators):
            raise ConfigurationError("quorum validators must be distinct")
        if not 1 <= config.quorum.threshold <= len(validators):
            raise ConfigurationError(
                f"quorum threshold {config.quorum.threshold} outside 1..{len(validators)}"
            )
