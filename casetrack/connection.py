"""
Database engine and transaction scopes for CaseTrack.

Every public service operation runs inside one UnitOfWork: the ledger,
deadline tracker and alert engine commit explicitly on success, and
anything left uncommitted is rolled back when the block exits.

Settings come from DB_* environment variables, falling back to the
`database` section of config.yaml. PostgreSQL is the production target;
SQLite URLs are accepted for tests and single-desk installs.
"""

import os
import logging
from typing import Generator, Optional
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event, text, Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    retry_if_exception_type,
    before_sleep_log
)

from casetrack.models import Base

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

@dataclass
class DatabaseSettings:
    """Connection and pool settings for the ledger database."""
    host: str = "localhost"
    port: int = 5432
    database: str = "casetrack"
    user: str = "casetrack"
    password: str = "casetrack"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'DatabaseSettings':
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "casetrack"),
            user=os.getenv("DB_USER", "casetrack"),
            password=os.getenv("DB_PASSWORD", "casetrack"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or None,
        )

    @classmethod
    def from_config(cls, database_config) -> 'DatabaseSettings':
        """
        Merge config.yaml's database section under the environment.

        Environment variables that are set win; unset ones take the
        configured value instead of the built-in default.
        """
        return cls(
            host=os.getenv("DB_HOST", database_config.host),
            port=int(os.getenv("DB_PORT", str(database_config.port))),
            database=os.getenv("DB_NAME", database_config.name),
            user=os.getenv("DB_USER", database_config.user),
            password=os.getenv("DB_PASSWORD", database_config.password),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url=os.getenv("DATABASE_URL") or database_config.url or None,
        )

    def get_url(self) -> str:
        if self.url:
            return self.url
        return (
            f"postgresql+psycopg2://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.get_url().startswith("sqlite")


def get_pool_settings(settings: DatabaseSettings) -> dict:
    """create_engine keyword arguments; SQLite keeps SQLAlchemy's default pool."""
    if settings.is_sqlite:
        return {"connect_args": {"check_same_thread": False}}
    return {
        "poolclass": QueuePool,
        "pool_size": settings.pool_size,
        "max_overflow": settings.max_overflow,
        "pool_timeout": settings.pool_timeout,
        "pool_recycle": settings.pool_recycle,
        "pool_pre_ping": True,
    }


# Retries only cover connection-level failures; constraint errors surface at once
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)

# Three quick attempts for health checks
health_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(0.2),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True
)


# ============================================
# UNIT OF WORK
# ============================================

class UnitOfWork:
    """
    One transaction per ledger operation.

    Usage:
        with provider.get_unit_of_work() as uow:
            MovementRepository(uow.session).create(...)
            FileRepository(uow.session).set_custodian(...)
            uow.commit()
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._session: Optional[Session] = None

    def __enter__(self) -> 'UnitOfWork':
        self._session = self._session_factory()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.rollback()
        self.close()

    @property
    def session(self) -> Session:
        if self._session is None:
            raise RuntimeError("UnitOfWork not started. Use as context manager.")
        return self._session

    def commit(self) -> None:
        if self._session:
            self._session.commit()

    def rollback(self) -> None:
        if self._session:
            self._session.rollback()

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None


# ============================================
# SESSION PROVIDER
# ============================================

class DatabaseSessionProvider:
    """
    Owns the engine and hands out transaction scopes to the services.

    The API builds one provider at startup and passes it to every
    service; tests build one around an in-memory SQLite engine.
    """

    def __init__(
        self,
        settings: Optional[DatabaseSettings] = None,
        engine: Optional[Engine] = None
    ):
        self._settings = settings or DatabaseSettings.from_env()
        self._engine = engine
        self._session_factory: Optional[sessionmaker] = None
        self._initialized = False

    def init(self, echo: Optional[bool] = None) -> None:
        if self._initialized:
            return

        if echo is not None:
            self._settings.echo = echo

        if self._engine is None:
            self._engine = self._connect()

        # Loaded rows stay readable after commit; services return them to callers
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
        self._enable_sqlite_foreign_keys()

        self._initialized = True
        logger.info(f"Ledger database ready ({self._engine.dialect.name})")

    @db_retry
    def _connect(self) -> Engine:
        engine = create_engine(
            self._settings.get_url(),
            echo=self._settings.echo,
            **get_pool_settings(self._settings)
        )
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return engine

    def _enable_sqlite_foreign_keys(self) -> None:
        if self._engine.dialect.name != "sqlite":
            return

        @event.listens_for(self._engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    def get_unit_of_work(self) -> UnitOfWork:
        if self._session_factory is None:
            self.init()
        return UnitOfWork(self._session_factory)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on clean exit and rolls back on error."""
        if self._session_factory is None:
            self.init()

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        if self._engine is None:
            self.init()
        Base.metadata.create_all(self._engine)
        logger.info("Ledger tables created")

    @health_retry
    def _ping(self) -> None:
        with self.session_scope() as session:
            session.execute(text("SELECT 1"))

    def health_check(self) -> bool:
        """True once SELECT 1 succeeds, retrying transient OperationalErrors."""
        try:
            self._ping()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================
# GLOBAL PROVIDER
# ============================================

_db_provider: Optional[DatabaseSessionProvider] = None


def get_db_provider() -> DatabaseSessionProvider:
    global _db_provider
    if _db_provider is None:
        _db_provider = DatabaseSessionProvider()
    return _db_provider


def init_db(echo: bool = False, settings: Optional[DatabaseSettings] = None) -> DatabaseSessionProvider:
    """Initialize the global provider. Called at API startup and by the seed script."""
    global _db_provider
    if settings is not None and _db_provider is None:
        _db_provider = DatabaseSessionProvider(settings=settings)
    provider = get_db_provider()
    provider.init(echo=echo)
    return provider


def close_db() -> None:
    global _db_provider
    if _db_provider:
        _db_provider.close()
        _db_provider = None


def create_test_provider(
    engine: Optional[Engine] = None,
    settings: Optional[DatabaseSettings] = None
) -> DatabaseSessionProvider:
    """Provider around a pre-built engine, e.g. in-memory SQLite."""
    return DatabaseSessionProvider(settings=settings, engine=engine)
