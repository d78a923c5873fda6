# relayer/core/logging.py
"""
Logging for the relayer.

Everything logs under the `relayer.*` namespace. Structured context
(transfer id, chain, tx hash, ...) travels as record attributes and is
rendered as `key=value` pairs after the message.
"""

import logging
import sys
from logging import DEBUG, INFO, WARNING, ERROR, CRITICAL
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime


CONTEXT_ATTRS = [
    'transfer_id', 'chain', 'direction', 'block_number', 'tx_hash',
    'log_index', 'nonce', 'status', 'retry_count', 'error',
]


class RelayerFormatter(logging.Formatter):
    """`time - logger - LEVEL - message | transfer_id=... chain=...`"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        line = f"{timestamp} - {record.name} - {record.levelname} - {record.getMessage()}"

        context = " ".join(
            f"{attr}={getattr(record, attr)}" for attr in CONTEXT_ATTRS if hasattr(record, attr)
        )
        if context:
            line = f"{line} | {context}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class RelayerLogger:
    """Configure-once handlers for the `relayer` logger tree."""

    _configured = False

    @classmethod
    def configure(cls,
                  log_dir: Optional[Path] = None,
                  log_level: str = "INFO",
                  console_enabled: bool = True,
                  file_enabled: bool = False,
                  structured_format: bool = True) -> None:
        if cls._configured:
            return

        level = getattr(logging, log_level.upper())
        formatter = RelayerFormatter() if structured_format else logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        root_logger = logging.getLogger('relayer')
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if console_enabled:
            root_logger.addHandler(cls._handler(logging.StreamHandler(sys.stdout), level, formatter))

        if file_enabled and log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)
            root_logger.addHandler(cls._handler(
                logging.FileHandler(log_dir / 'relayer.log'), level, RelayerFormatter()))
            # Dead letters, flags and rejections, for operators
            root_logger.addHandler(cls._handler(
                logging.FileHandler(log_dir / 'relayer_errors.log'), logging.ERROR, RelayerFormatter()))

        cls._configured = True

    @staticmethod
    def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    @classmethod
    def reset(cls) -> None:
        logging.getLogger('relayer').handlers.clear()
        cls._configured = False

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._configured:
            cls.configure()
        if not name.startswith('relayer'):
            name = f'relayer.{name}'
        return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    if logger.isEnabledFor(level):
        record = logger.makeRecord(logger.name, level, "", 0, message, (), None)
        for key, value in context.items():
            setattr(record, key, value)
        logger.handle(record)


class LoggingMixin:
    """Lazily created per-class logger plus context-aware helpers."""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            module = self.__class__.__module__
            if module.startswith('relayer.'):
                module = module[len('relayer.'):]
            self._logger = RelayerLogger.get_logger(f"{module}.{self.__class__.__name__}")
        return self._logger

    def log_debug(self, message: str, **context) -> None:
        log_with_context(self.logger, DEBUG, message, **context)

    def log_info(self, message: str, **context) -> None:
        log_with_context(self.logger, INFO, message, **context)

    def log_warning(self, message: str, **context) -> None:
        log_with_context(self.logger, WARNING, message, **context)

    def log_error(self, message: str, **context) -> None:
        log_with_context(self.logger, ERROR, message, **context)

    def transfer_context(self, transfer_id: str, **additional_context) -> Dict[str, Any]:
        return {'transfer_id': transfer_id, **additional_context}


__all__ = [
    'RelayerFormatter', 'RelayerLogger', 'LoggingMixin', 'log_with_context',
    'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL',
]
