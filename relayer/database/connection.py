# relayer/database/connection.py

from typing import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, Engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from ..core.logging import RelayerLogger, log_with_context, INFO, DEBUG, ERROR
from ..types import DatabaseConfig


class DatabaseManager:
    def __init__(self, config: DatabaseConfig):
        if not config:
            raise ValueError("DatabaseConfig is required")
        
        self.config = config
        self.logger = RelayerLogger.get_logger(f'database.{self.__class__.__name__.lower()}')
        self._engine = None
        self._session_factory = None
        self._repositories = {}
        
        log_with_context(self.logger, DEBUG, "DatabaseManager created",
                        db_url_host=self._extract_host_from_url(config.url))
    
    def _extract_host_from_url(self, url: str) -> str:
        try:
            if '@' in url and '/' in url:
                after_at = url.split('@')[1]
                return after_at.split('/')[0]
            return url.split(':')[0]
        except Exception:
            return "unknown"

    @property
    def is_sqlite(self) -> bool:
        return self.config.url.startswith('sqlite')
    
    def initialize(self) -> None:
        if self._engine is not None:
            self.logger.warning("Database already initialized")
            return
        
        try:
            self.logger.info("Initializing database engine")
            
            if self.is_sqlite:
                # Pipelines share the file from several threads
                self._engine = create_engine(
                    self.config.url,
                    connect_args={'check_same_thread': False, 'timeout': 30},
                    echo=self.config.echo,
                )
            else:
                self._engine = create_engine(
                    self.config.url,
                    poolclass=QueuePool,
                    pool_size=self.config.pool_size,
                    max_overflow=self.config.max_overflow,
                    pool_timeout=30,
                    pool_recycle=3600,
                    pool_pre_ping=True,
                    echo=self.config.echo,
                )
            
            self._session_factory = sessionmaker(
                bind=self._engine,
                expire_on_commit=False,
            )
            
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            
            log_with_context(self.logger, INFO, "Database initialized successfully",
                            pool_size=self.config.pool_size,
                            max_overflow=self.config.max_overflow)
            
        except Exception as e:
            log_with_context(self.logger, ERROR, "Failed to initialize database",
                            error=str(e),
                            exception_type=type(e).__name__)
            raise

    def create_schema(self) -> None:
        from .base import RelayerBase
        from . import tables  # noqa: F401  registers the mapped tables

        RelayerBase.metadata.create_all(self.engine)
        self.logger.info("Relayer schema ensured")
    
    def shutdown(self) -> None:
        self.logger.info("Shutting down database connections")
        
        try:
            if self._engine:
                self._engine.dispose()
                self._engine = None
            
            self._session_factory = None
            self._repositories.clear()
            
        except Exception as e:
            log_with_context(self.logger, ERROR, "Error during database shutdown",
                            error=str(e),
                            exception_type=type(e).__name__)
    
    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._engine
    
    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        
        session = self._session_factory()
        try:
            yield session
        except Exception as e:
            log_with_context(self.logger, DEBUG, "Database session error, rolling back",
                            error=str(e),
                            exception_type=type(e).__name__)
            session.rollback()
            raise
        finally:
            session.close()
    
    @contextmanager
    def get_transaction(self) -> Generator[Session, None, None]:
        with self.get_session() as session:
            yield session
            session.commit()
    
    def health_check(self) -> bool:
        try:
            with self.get_session() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            log_with_context(self.logger, ERROR, "Database health check failed",
                            error=str(e),
                            exception_type=type(e).__name__)
            return False

    def _get_or_create_repository(self, repo_class, repo_name):
        if repo_name not in self._repositories:
            self._repositories[repo_name] = repo_class(self)
        return self._repositories[repo_name]

    # === Relay Repositories ===

    def get_cursor_repo(self):
        from .repositories.cursor_repository import CursorRepository
        return self._get_or_create_repository(CursorRepository, 'cursor')

    def get_ledger(self):
        from .repositories.ledger_repository import IdempotencyLedger
        return self._get_or_create_repository(IdempotencyLedger, 'ledger')

    def get_transfer_repo(self):
        from .repositories.transfer_repository import TransferRepository
        return self._get_or_create_repository(TransferRepository, 'transfer')

    def get_signature_repo(self):
        from .repositories.signature_repository import SignatureRepository
        return self._get_or_create_repository(SignatureRepository, 'signature')
