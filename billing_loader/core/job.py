"""
Load job orchestration.

INIT -> STAGING_READY -> LOADING -> MERGE_PENDING -> MERGING -> DONE, with
FAILED reachable from every state but DONE. The same engine runs one
worker inline or N workers in separate processes; the merge only starts
once every worker has reached a terminal state.
"""
import multiprocessing
import queue
import time
from concurrent.futures import ALL_COMPLETED, Future, ProcessPoolExecutor, wait
from contextlib import nullcontext
from datetime import datetime
from typing import List, Optional, Sequence

from ..database.engine import Database, create_database_instance
from ..database.merge import MergeCoordinator
from ..database.staging import StagingManager
from ..setup.config.models import LoadingConfig, MergePolicy
from ..setup.logging import logger
from .exceptions import LoaderError, WorkerError
from .partitioner import partition
from .progress import ProgressAggregator, ProgressDisplay, ProgressListener
from .schemas import Chunk, JobReport, JobState, Record, WorkerResult, WorkerTask
from .worker import run_worker

_TRANSITIONS = {
    JobState.INIT: {JobState.STAGING_READY},
    JobState.STAGING_READY: {JobState.LOADING},
    JobState.LOADING: {JobState.MERGE_PENDING},
    JobState.MERGE_PENDING: {JobState.MERGING},
    JobState.MERGING: {JobState.DONE},
}


class LoadJob:
    """Stages, loads and merges one set of records."""

    def __init__(self, config: LoadingConfig, database_url: str, records: Sequence[Record],
                 display: Optional[ProgressDisplay] = None, database: Optional[Database] = None):
        self.config = config
        self.database_url = database_url
        self.records = records
        self.display = display
        self._database = database
        self.aggregator = ProgressAggregator(display)
        self.report = JobReport(records=len(records))

    @property
    def state(self) -> JobState:
        return self.report.state

    def _transition(self, new_state: JobState) -> None:
        if new_state is not JobState.FAILED and new_state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Invalid job transition {self.state.value} -> {new_state.value}")
        logger.info(f"[LoadJob] {self.state.value} -> {new_state.value}")
        self.report.state = new_state

    def _fail(self, stage: str) -> None:
        self.report.failed_stage = stage
        self._transition(JobState.FAILED)

    def run(self) -> JobReport:
        """
        Execute the whole job.

        Returns:
            JobReport: Final state and per-worker outcomes.

        Raises:
            ConfigurationError, StagingError, WorkerError, MergeError: The job
                ends in FAILED.
            KeyboardInterrupt: Loading was interrupted; merge did not run.
        """
        start_time = time.perf_counter()
        logger.info(f"[LoadJob] Start: {datetime.now():%Y-%m-%d %H:%M:%S}")
        database = self._database

        try:
            try:
                if database is None:
                    database = create_database_instance(self.database_url)
                staging = StagingManager(database.engine, self.config.target_table, self.config.staging_table)
                staging.reset()
            except LoaderError as e:
                self._fail(e.stage)
                raise
            self._transition(JobState.STAGING_READY)

            chunks = partition(self.records, self.config.workers)
            self.report.workers = len(chunks)
            logger.info(f"[LoadJob] Loaded {len(self.records)} msisdns into {len(chunks)} chunks")

            self._transition(JobState.LOADING)
            try:
                self.report.worker_results = self._load(chunks)
            except KeyboardInterrupt:
                logger.error("[LoadJob] Interrupted, merge skipped; staging table left in place")
                self._fail("interrupted")
                raise
            self._transition(JobState.MERGE_PENDING)

            failed = self.report.failed_workers
            if failed:
                logger.error(
                    f"[LoadJob] {len(failed)}/{len(self.report.worker_results)} workers failed: "
                    + ", ".join(f"worker {r.worker_id}: {r.error}" for r in failed)
                )
                if self.config.merge_policy is MergePolicy.ON_SUCCESS:
                    logger.warning(
                        f"[LoadJob] Merge skipped (policy '{self.config.merge_policy.value}'), "
                        f"staging table '{self.config.staging_table}' retained"
                    )
                    self._fail(WorkerError.stage)
                    raise self._worker_error(failed)

            self._transition(JobState.MERGING)
            merger = MergeCoordinator(
                database.engine, staging, self.config.key_column, self.config.flag_column
            )
            try:
                self.report.merged_rows = merger.merge()
                self.report.merged = True
            except LoaderError as e:
                self._fail(e.stage)
                raise

            if failed:
                self._fail(WorkerError.stage)
                raise self._worker_error(failed)

            self._transition(JobState.DONE)
            return self.report
        finally:
            if self._database is None and database is not None:
                database.dispose()
            elapsed = time.perf_counter() - start_time
            logger.info(f"[LoadJob] Finished in state '{self.state.value}' after {elapsed:.2f} seconds")

    @staticmethod
    def _worker_error(failed: List[WorkerResult]) -> WorkerError:
        ids = ", ".join(str(r.worker_id) for r in failed)
        return WorkerError(f"workers [{ids}] did not stage their chunks", failed_workers=failed)

    def _build_tasks(self, chunks: List[Chunk]) -> List[WorkerTask]:
        return [
            WorkerTask(
                worker_id=chunk.index,
                database_url=self.database_url,
                staging_table=self.config.staging_table,
                key_column=self.config.key_column,
                flag_column=self.config.flag_column,
                batch_size=self.config.batch_size,
                records=chunk.records,
            )
            for chunk in chunks
        ]

    def _load(self, chunks: List[Chunk]) -> List[WorkerResult]:
        tasks = self._build_tasks(chunks)
        for task in tasks:
            self.aggregator.register(task.worker_id, len(task.records))

        display_context = self.display if hasattr(self.display, "__enter__") else nullcontext()
        with display_context:
            if len(tasks) <= 1:
                return self._run_inline(tasks)
            return self._run_parallel(tasks)

    def _run_inline(self, tasks: List[WorkerTask]) -> List[WorkerResult]:
        """Single worker: run in this process, same code path as a pool worker."""
        progress_queue = queue.Queue()
        results = []
        with ProgressListener(progress_queue, self.aggregator):
            for task in tasks:
                try:
                    results.append(run_worker(task, progress_queue))
                except Exception as e:
                    results.append(self._crashed(task, e))
        return results

    def _run_parallel(self, tasks: List[WorkerTask]) -> List[WorkerResult]:
        """One process per chunk; waits for all of them (barrier)."""
        with multiprocessing.Manager() as manager:
            progress_queue = manager.Queue()
            with ProgressListener(progress_queue, self.aggregator):
                executor = ProcessPoolExecutor(max_workers=len(tasks))
                futures: List[Future] = []
                try:
                    for task in tasks:
                        logger.info(f"[LoadJob] Starting worker {task.worker_id} with {len(task.records)} rows")
                        futures.append(executor.submit(run_worker, task, progress_queue))
                    wait(futures, return_when=ALL_COMPLETED)
                except KeyboardInterrupt:
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise
                executor.shutdown(wait=True)
                logger.info("[LoadJob] All workers finished")
                return [self._collect(task, future) for task, future in zip(tasks, futures)]

    @staticmethod
    def _collect(task: WorkerTask, future: Future) -> WorkerResult:
        error = future.exception()
        if error is not None:
            return LoadJob._crashed(task, error)
        return future.result()

    @staticmethod
    def _crashed(task: WorkerTask, error: BaseException) -> WorkerResult:
        logger.error(f"[LoadJob] Worker {task.worker_id} crashed: {error!r}")
        return WorkerResult(worker_id=task.worker_id, total=len(task.records), error=repr(error))
