from sqlalchemy import MetaData, Table, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from ..core.exceptions import StagingError
from ..setup.logging import logger
from .dml import reflect_table, staging_table_like


class StagingManager:
    """
    Owns the lifecycle of the staging table.

    The coordinator calls ``reset()`` once before any worker starts, so
    the drop and the create never race with an insert.
    """

    def __init__(self, engine: Engine, target_table: str, staging_table: str):
        self.engine = engine
        self.target_table = target_table
        self.staging_table = staging_table

    def reset(self) -> None:
        """
        Drop the staging table if present and recreate it empty with the
        target table's columns.

        Raises:
            StagingError: If the target cannot be reflected or either DDL
                statement fails.
        """
        try:
            with self.engine.begin() as conn:
                target = reflect_table(conn, self.target_table)
                staging = staging_table_like(target, self.staging_table)
                staging.drop(conn, checkfirst=True)
                logger.info(f"[StagingManager] Dropped staging table '{self.staging_table}'")
                staging.create(conn)
                logger.info(
                    f"[StagingManager] Created staging table '{self.staging_table}' "
                    f"like '{self.target_table}' ({len(staging.columns)} columns)"
                )
        except NoSuchTableError as e:
            raise StagingError(f"Target table '{self.target_table}' does not exist") from e
        except SQLAlchemyError as e:
            logger.error(f"[StagingManager] Failed to reset staging table: {e}")
            raise StagingError(f"Could not reset staging table '{self.staging_table}': {e}") from e

    def drop(self, conn) -> None:
        """Drop the staging table on an open connection (part of the merge transaction)."""
        Table(self.staging_table, MetaData()).drop(conn, checkfirst=True)
        logger.info(f"[StagingManager] Dropped staging table '{self.staging_table}'")

    def exists(self) -> bool:
        return inspect(self.engine).has_table(self.staging_table)
