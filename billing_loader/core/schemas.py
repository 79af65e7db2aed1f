from dataclasses import dataclass, field
from enum import Enum
from typing import List, NamedTuple, Optional


class Record(NamedTuple):
    """One subscriber billing row."""
    msisdn: str
    prepaid: bool


class Chunk(NamedTuple):
    """Contiguous slice of the record sequence owned by one worker."""
    index: int
    start: int
    records: List[Record]

    @property
    def size(self) -> int:
        return len(self.records)

    @property
    def end(self) -> int:
        return self.start + self.size


class ProgressEvent(NamedTuple):
    """Emitted by a worker after each successful flush."""
    worker_id: int
    count: int


@dataclass
class WorkerTask:
    """Everything a worker process needs, handed over at spawn time."""
    worker_id: int
    database_url: str
    staging_table: str
    key_column: str
    flag_column: str
    batch_size: int
    records: List[Record] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"WorkerTask(worker_id={self.worker_id}, staging_table='{self.staging_table}', "
            f"batch_size={self.batch_size}, records={len(self.records)})"
        )


@dataclass
class WorkerResult:
    """Terminal outcome of one worker."""
    worker_id: int
    total: int
    flushed: int = 0
    batches: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class JobState(str, Enum):
    INIT = "init"
    STAGING_READY = "staging_ready"
    LOADING = "loading"
    MERGE_PENDING = "merge_pending"
    MERGING = "merging"
    DONE = "done"
    FAILED = "failed"


@dataclass
class JobReport:
    """Summary of a load job run."""
    state: JobState = JobState.INIT
    failed_stage: Optional[str] = None
    records: int = 0
    workers: int = 0
    worker_results: List[WorkerResult] = field(default_factory=list)
    merged: bool = False
    merged_rows: int = 0

    @property
    def failed_workers(self) -> List[WorkerResult]:
        return [result for result in self.worker_results if not result.ok]

    @property
    def staged_rows(self) -> int:
        return sum(result.flushed for result in self.worker_results)
