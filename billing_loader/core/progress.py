"""
Progress aggregation for the load job.

Workers publish ProgressEvent messages on a dedicated queue. A listener
thread in the coordinating process drains that queue into a
ProgressAggregator and forwards updates to an optional display. None of
this gates the workers or the merge: a lost event only makes the
displayed numbers lag.
"""
import queue
import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from ..setup.logging import logger
from .schemas import ProgressEvent

_STOP = None


@dataclass
class WorkerProgress:
    current: int = 0
    total: int = 0

    @property
    def done(self) -> bool:
        return self.current >= self.total


class ProgressDisplay(Protocol):
    """Anything that can render per-worker progress."""

    def add_worker(self, worker_id: int, total: int) -> None:
        ...

    def update(self, worker_id: int, current: int) -> None:
        ...


class ProgressAggregator:
    """Per-worker records processed vs. chunk size."""

    def __init__(self, display: Optional[ProgressDisplay] = None):
        self.display = display
        self._workers: Dict[int, WorkerProgress] = {}
        self._lock = threading.Lock()

    def register(self, worker_id: int, total: int) -> None:
        with self._lock:
            self._workers[worker_id] = WorkerProgress(current=0, total=total)
        if self.display is not None:
            self.display.add_worker(worker_id, total)

    def apply(self, event: ProgressEvent) -> None:
        with self._lock:
            progress = self._workers.get(event.worker_id)
            if progress is None:
                logger.debug(f"[Progress] Ignoring event for unknown worker {event.worker_id}")
                return
            progress.current += event.count
            current = progress.current
        if self.display is not None:
            self.display.update(event.worker_id, current)

    def get(self, worker_id: int) -> Optional[WorkerProgress]:
        with self._lock:
            progress = self._workers.get(worker_id)
            return WorkerProgress(progress.current, progress.total) if progress else None

    def snapshot(self) -> Dict[int, WorkerProgress]:
        with self._lock:
            return {
                worker_id: WorkerProgress(p.current, p.total)
                for worker_id, p in self._workers.items()
            }

    def overall(self) -> WorkerProgress:
        with self._lock:
            return WorkerProgress(
                current=sum(p.current for p in self._workers.values()),
                total=sum(p.total for p in self._workers.values()),
            )


class ProgressListener:
    """Drains a progress queue into an aggregator on a background thread."""

    def __init__(self, progress_queue, aggregator: ProgressAggregator, poll_interval: float = 0.2):
        self.queue = progress_queue
        self.aggregator = aggregator
        self.poll_interval = poll_interval
        self._thread: Optional[threading.Thread] = None

    def start(self) -> "ProgressListener":
        self._thread = threading.Thread(target=self._run, name="progress-listener", daemon=True)
        self._thread.start()
        return self

    def _run(self) -> None:
        while True:
            try:
                event = self.queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            except (OSError, EOFError):
                logger.debug("[Progress] Queue closed, listener exiting")
                return
            if event is _STOP:
                return
            self.aggregator.apply(event)

    def stop(self, timeout: float = 5.0) -> None:
        """Drain the remaining events, then stop the thread."""
        if self._thread is None:
            return
        try:
            self.queue.put(_STOP)
        except (OSError, EOFError, ValueError):
            pass
        self._thread.join(timeout)
        self._thread = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()


class RichProgressDisplay:
    """One rich progress bar per worker."""

    def __init__(self, progress: Optional[Progress] = None):
        self.progress = progress or Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
        )
        self._tasks: Dict[int, int] = {}

    def add_worker(self, worker_id: int, total: int) -> None:
        self._tasks[worker_id] = self.progress.add_task(f"Worker {worker_id}", total=total)

    def update(self, worker_id: int, current: int) -> None:
        task_id = self._tasks.get(worker_id)
        if task_id is not None:
            self.progress.update(task_id, completed=current)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.progress.stop()
