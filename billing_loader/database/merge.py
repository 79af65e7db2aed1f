import time

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..core.exceptions import MergeError
from ..setup.logging import logger
from .dml import build_merge_statement, lightweight_table
from .staging import StagingManager


class MergeCoordinator:
    """
    Copies staged rows into the permanent table, first writer wins.

    Existing target rows are never updated, so the merge can be repeated
    over the same staging contents without changing the outcome.
    """

    def __init__(self, engine: Engine, staging: StagingManager, key_column: str, flag_column: str):
        self.engine = engine
        self.staging = staging
        self.key_column = key_column
        self.flag_column = flag_column

    def merge(self) -> int:
        """
        Insert-or-skip every staging row into the target, then drop staging.

        Both steps share one transaction; on failure it is rolled back and
        the staging table stays in place for inspection.

        Returns:
            int: Number of rows inserted into the target table.

        Raises:
            MergeError: If the merge statement or the drop fails.
        """
        target = lightweight_table(self.staging.target_table, self.key_column, self.flag_column)
        source = lightweight_table(self.staging.staging_table, self.key_column, self.flag_column)
        statement = build_merge_statement(
            self.engine.dialect.name, target, source, self.key_column, self.flag_column
        )

        start_time = time.perf_counter()
        logger.info(
            f"[MergeCoordinator] Merging '{self.staging.staging_table}' into "
            f"'{self.staging.target_table}' (could take a minute) ..."
        )
        try:
            with self.engine.begin() as conn:
                result = conn.execute(statement)
                inserted = max(result.rowcount, 0)
                self.staging.drop(conn)
        except SQLAlchemyError as e:
            logger.error(f"[MergeCoordinator] Merge failed, staging table retained: {e}")
            raise MergeError(
                f"Could not merge '{self.staging.staging_table}' into "
                f"'{self.staging.target_table}': {e}"
            ) from e

        elapsed = time.perf_counter() - start_time
        logger.info(f"[MergeCoordinator] Inserted {inserted} new rows in {elapsed:.2f}s")
        return inserted
