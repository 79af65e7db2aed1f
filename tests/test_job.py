"""
Tests for the load job state machine, barrier and merge policy.
"""
from unittest.mock import patch

import pytest
from sqlalchemy import text

from billing_loader.core.exceptions import ConfigurationError, MergeError, StagingError, WorkerError
from billing_loader.core.job import LoadJob
from billing_loader.core.schemas import JobState, Record, WorkerResult, WorkerTask
from billing_loader.core.worker import run_worker
from billing_loader.setup.config.models import LoadingConfig, MergePolicy
from billing_loader.utils.record_source import load_sources

STAGING = "subscriber_billings_temp"


def _staging_exists(database):
    with database.engine.connect() as conn:
        return conn.execute(
            text("SELECT COUNT(*) FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": STAGING},
        ).scalar() == 1


class TestEndToEnd:

    def test_two_files_single_worker(self, database, sqlite_url, write_input, fetch_rows):
        true_file = write_input("true.txt", ["header", "1000000001,true", "1000000002,true"])
        false_file = write_input("false.txt", ["header", "1000000003,false"])
        records = load_sources(true_file, false_file)
        config = LoadingConfig(workers=1, batch_size=2, show_progress=False)

        job = LoadJob(config, sqlite_url, records, database=database)
        report = job.run()

        assert report.state is JobState.DONE
        assert report.staged_rows == 3
        assert report.merged_rows == 3
        assert [r.batches for r in report.worker_results] == [2]
        assert fetch_rows() == {"1000000001": True, "1000000002": True, "1000000003": False}
        assert not _staging_exists(database)

    def test_rerun_does_not_duplicate_rows(self, database, sqlite_url, records_factory, count_rows):
        records = records_factory(25)
        config = LoadingConfig(workers=1, batch_size=4, show_progress=False)

        first = LoadJob(config, sqlite_url, records, database=database).run()
        second = LoadJob(config, sqlite_url, records, database=database).run()

        assert first.merged_rows == 25
        assert second.merged_rows == 0
        assert second.state is JobState.DONE
        assert count_rows("subscriber_billings") == 25

    def test_duplicates_across_sources_merge_once(self, database, sqlite_url, fetch_rows):
        records = [Record("A", True), Record("B", False), Record("A", False)]
        config = LoadingConfig(workers=1, batch_size=10, show_progress=False)

        LoadJob(config, sqlite_url, records, database=database).run()

        assert set(fetch_rows()) == {"A", "B"}

    def test_parallel_workers(self, database, sqlite_url, records_factory, count_rows):
        records = records_factory(40)
        config = LoadingConfig(workers=3, batch_size=5, show_progress=False)

        job = LoadJob(config, sqlite_url, records, database=database)
        report = job.run()

        assert report.state is JobState.DONE
        assert report.workers == 3
        assert sorted(r.flushed for r in report.worker_results) == [13, 13, 14]
        assert report.merged_rows == 40
        assert count_rows("subscriber_billings") == 40
        assert job.aggregator.overall().total == 40

    def test_worker_count_clamped_to_records(self, database, sqlite_url, records_factory):
        config = LoadingConfig(workers=8, batch_size=1, show_progress=False)

        report = LoadJob(config, sqlite_url, records_factory(2), database=database).run()

        assert report.workers == 2
        assert report.state is JobState.DONE

    def test_empty_input(self, database, sqlite_url, count_rows):
        config = LoadingConfig(workers=2, batch_size=5, show_progress=False)

        report = LoadJob(config, sqlite_url, [], database=database).run()

        assert report.state is JobState.DONE
        assert report.workers == 0
        assert count_rows("subscriber_billings") == 0

    def test_progress_aggregated_for_single_worker(self, database, sqlite_url, records_factory):
        config = LoadingConfig(workers=1, batch_size=3, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(7), database=database)

        job.run()

        assert job.aggregator.get(0).current == 7
        assert job.aggregator.get(0).total == 7


class TestFailures:

    @staticmethod
    def _partial_load(sqlite_url):
        """One worker stages its rows, the other fails."""
        def _load(self, chunks):
            good = run_worker(WorkerTask(
                worker_id=0, database_url=sqlite_url, staging_table=STAGING,
                key_column="msisdn", flag_column="prepaid", batch_size=2,
                records=[Record("1000000001", True), Record("1000000002", False)],
            ))
            bad = WorkerResult(worker_id=1, total=2, error="connection reset")
            return [good, bad]
        return _load

    def test_staging_failure_dispatches_no_workers(self, sqlite_url, records_factory):
        config = LoadingConfig(workers=2, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(4))

        with patch.object(LoadJob, "_load") as load, pytest.raises(StagingError):
            job.run()

        load.assert_not_called()
        assert job.state is JobState.FAILED
        assert job.report.failed_stage == "staging"

    def test_worker_failure_skips_merge_by_default(self, database, sqlite_url, count_rows):
        config = LoadingConfig(workers=2, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, [Record(str(i), True) for i in range(4)], database=database)

        with patch.object(LoadJob, "_load", self._partial_load(sqlite_url)):
            with pytest.raises(WorkerError) as excinfo:
                job.run()

        assert [r.worker_id for r in excinfo.value.failed_workers] == [1]
        assert job.state is JobState.FAILED
        assert job.report.failed_stage == "worker"
        assert not job.report.merged
        assert count_rows("subscriber_billings") == 0
        assert count_rows(STAGING) == 2

    def test_worker_failure_with_always_policy_merges_staged_rows(self, database, sqlite_url, fetch_rows):
        config = LoadingConfig(workers=2, batch_size=2, merge_policy=MergePolicy.ALWAYS,
                               show_progress=False)
        job = LoadJob(config, sqlite_url, [Record(str(i), True) for i in range(4)], database=database)

        with patch.object(LoadJob, "_load", self._partial_load(sqlite_url)):
            with pytest.raises(WorkerError):
                job.run()

        assert job.report.merged
        assert job.state is JobState.FAILED
        assert fetch_rows() == {"1000000001": True, "1000000002": False}

    def test_merge_failure_is_reported(self, database, sqlite_url, records_factory):
        config = LoadingConfig(workers=1, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(3), database=database)

        with patch("billing_loader.core.job.MergeCoordinator.merge", side_effect=MergeError("boom")):
            with pytest.raises(MergeError):
                job.run()

        assert job.state is JobState.FAILED
        assert job.report.failed_stage == "merge"
        assert _staging_exists(database)

    def test_interrupt_skips_merge(self, database, sqlite_url, records_factory, count_rows):
        config = LoadingConfig(workers=1, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(3), database=database)

        with patch.object(LoadJob, "_load", side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                job.run()

        assert job.state is JobState.FAILED
        assert count_rows("subscriber_billings") == 0

    def test_bad_database_url_fails_job(self, records_factory):
        config = LoadingConfig(workers=1, batch_size=2, show_progress=False)
        job = LoadJob(config, "not a url", records_factory(2))

        with pytest.raises(ConfigurationError):
            job.run()

        assert job.state is JobState.FAILED
        assert job.report.failed_stage == "configuration"

    def test_inline_worker_crash_becomes_failed_result(self, database, sqlite_url, records_factory, count_rows):
        config = LoadingConfig(workers=1, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(3), database=database)

        with patch("billing_loader.core.job.run_worker", side_effect=RuntimeError("driver exploded")):
            with pytest.raises(WorkerError):
                job.run()

        assert job.state is JobState.FAILED
        assert job.report.failed_stage == "worker"
        assert "driver exploded" in job.report.worker_results[0].error
        assert count_rows("subscriber_billings") == 0

    def test_parallel_failure_is_isolated_to_its_worker(self, database, sqlite_url, records_factory, count_rows):
        config = LoadingConfig(workers=3, batch_size=2, show_progress=False)
        job = LoadJob(config, sqlite_url, records_factory(9), database=database)
        build_tasks = LoadJob._build_tasks

        def _one_broken_task(self, chunks):
            tasks = build_tasks(self, chunks)
            tasks[1].staging_table = "missing_table"
            return tasks

        with patch.object(LoadJob, "_build_tasks", _one_broken_task):
            with pytest.raises(WorkerError) as excinfo:
                job.run()

        results = {r.worker_id: r for r in job.report.worker_results}
        assert [r.worker_id for r in excinfo.value.failed_workers] == [1]
        assert results[0].ok and results[2].ok
        assert results[1].flushed == 0
        assert count_rows(STAGING) == 6
        assert count_rows("subscriber_billings") == 0

    def test_crashed_worker_becomes_failed_result(self):
        from concurrent.futures import Future

        future = Future()
        future.set_exception(RuntimeError("segfault"))
        task = WorkerTask(worker_id=4, database_url="sqlite://", staging_table=STAGING,
                          key_column="msisdn", flag_column="prepaid", batch_size=1,
                          records=[Record("1", True)])

        result = LoadJob._collect(task, future)

        assert not result.ok
        assert result.worker_id == 4
        assert "segfault" in result.error
