from sqlalchemy import create_engine
from sqlalchemy import pool
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import ConfigurationError
from ..setup.logging import logger

SUPPORTED_DIALECTS = ("postgresql", "sqlite")


class Database:
    """
    Represents the coordinator's database connection.
    Workers never share it; each one opens its own engine.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def dispose(self) -> None:
        self.engine.dispose()

    def __repr__(self):
        return f"Database(engine={self.engine})"


def _check_dialect(engine: Engine) -> None:
    if engine.dialect.name not in SUPPORTED_DIALECTS:
        engine.dispose()
        raise ConfigurationError(
            f"Unsupported database dialect '{engine.dialect.name}', "
            f"expected one of {', '.join(SUPPORTED_DIALECTS)}"
        )


def create_database_instance(uri: str) -> Database:
    """Create the coordinator engine, used for staging setup and merge."""
    try:
        if uri.startswith("sqlite"):
            engine = create_engine(uri)
        else:
            engine = create_engine(
                uri,
                poolclass=pool.QueuePool,
                pool_size=2,
                max_overflow=0,
                pool_pre_ping=True,
                connect_args={"connect_timeout": 10},
            )
    except (SQLAlchemyError, ValueError) as e:
        raise ConfigurationError(f"Invalid database URL: {e}") from e
    _check_dialect(engine)
    logger.info(f"Connecting to database {engine.url.database} ({engine.dialect.name})")
    return Database(engine)


def create_worker_engine(uri: str) -> Engine:
    """
    Create an engine for one worker process.

    NullPool hands out a fresh connection and closes it on release, so the
    worker's single connection lives exactly as long as it is checked out.
    """
    connect_args = {} if uri.startswith("sqlite") else {"connect_timeout": 10}
    engine = create_engine(uri, poolclass=pool.NullPool, connect_args=connect_args)
    _check_dialect(engine)
    return engine
