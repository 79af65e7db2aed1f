"""
Per-worker batched insertion into the staging table.

A worker owns one chunk and one database connection. It accumulates
records, flushes each full batch as a single multi-row INSERT and reports
every flush on the progress queue. The first failed flush stops the
worker; the failure is returned as a value so the coordinator can tell
workers apart.
"""
import time
from typing import Callable, List, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from ..database.dml import build_insert_statement, lightweight_table
from ..database.engine import create_worker_engine
from ..setup.logging import logger
from .schemas import ProgressEvent, Record, WorkerResult, WorkerTask


class BatchInserter:
    """
    Accumulates records and flushes them to staging in batches.

    ``on_flush`` is called with the number of records written after each
    successful flush.
    """

    def __init__(self, conn: Connection, task: WorkerTask,
                 on_flush: Optional[Callable[[int], None]] = None):
        if task.batch_size < 1:
            raise ValueError(f"Batch size must be >= 1, got {task.batch_size}")
        self.conn = conn
        self.task = task
        self.on_flush = on_flush
        self.staging = lightweight_table(task.staging_table, task.key_column, task.flag_column)
        self.pending: List[Record] = []
        self.flushed = 0
        self.batches = 0

    def insert(self, record: Record) -> None:
        self.pending.append(record)
        if len(self.pending) >= self.task.batch_size:
            self.flush()

    def flush(self) -> int:
        """Write the pending records in one statement. Returns the count written."""
        if not self.pending:
            return 0

        statement = build_insert_statement(
            self.staging, self.pending, self.task.key_column, self.task.flag_column
        )
        self.conn.execute(statement)
        self.conn.commit()

        count = len(self.pending)
        self.pending = []
        self.flushed += count
        self.batches += 1
        if self.on_flush is not None:
            self.on_flush(count)
        return count

    def close(self) -> None:
        """Flush whatever is left of the chunk (1..batch_size-1 records)."""
        self.flush()


def _progress_publisher(worker_id: int, progress_queue) -> Callable[[int], None]:
    def publish(count: int) -> None:
        if progress_queue is None:
            return
        try:
            progress_queue.put(ProgressEvent(worker_id, count))
        except (OSError, EOFError, ValueError) as e:
            # Progress is best-effort; a broken channel must not stop loading
            logger.debug(f"[Worker {worker_id}] Dropped progress event: {e}")

    return publish


def stage_records(conn: Connection, task: WorkerTask, progress_queue=None) -> WorkerResult:
    """Run one chunk through a BatchInserter on an open connection."""
    result = WorkerResult(worker_id=task.worker_id, total=len(task.records))
    inserter = BatchInserter(conn, task, _progress_publisher(task.worker_id, progress_queue))
    try:
        for record in task.records:
            inserter.insert(record)
        inserter.close()
    except SQLAlchemyError as e:
        result.error = str(e).splitlines()[0] if str(e) else e.__class__.__name__
        logger.error(
            f"[Worker {task.worker_id}] Flush failed after {inserter.flushed}/{result.total} "
            f"records, stopping: {result.error}"
        )
    finally:
        result.flushed = inserter.flushed
        result.batches = inserter.batches
    return result


def run_worker(task: WorkerTask, progress_queue=None) -> WorkerResult:
    """
    Worker entry point, executed in its own process (or inline when the
    job runs with a single worker).
    """
    start_time = time.perf_counter()
    logger.info(f"[Worker {task.worker_id}] Starting with {len(task.records)} rows")

    try:
        engine = create_worker_engine(task.database_url)
    except SQLAlchemyError as e:
        return WorkerResult(worker_id=task.worker_id, total=len(task.records), error=str(e))

    try:
        with engine.connect() as conn:
            result = stage_records(conn, task, progress_queue)
    except SQLAlchemyError as e:
        logger.error(f"[Worker {task.worker_id}] Could not connect: {e}")
        result = WorkerResult(worker_id=task.worker_id, total=len(task.records), error=str(e))
    finally:
        engine.dispose()

    elapsed = time.perf_counter() - start_time
    if result.ok:
        logger.info(
            f"[Worker {task.worker_id}] Finished: {result.flushed} rows in "
            f"{result.batches} batches ({elapsed:.2f}s)"
        )
    return result
