"""
Error kinds raised by the load job.

Each error names the stage that failed so the CLI can report which
component aborted the run.
"""


class LoaderError(Exception):
    """Base class for every fatal load-job error."""

    stage = "job"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.stage} failed: {self.message}"


class ConfigurationError(LoaderError):
    """Invalid arguments, unreadable inputs or malformed connection descriptor."""

    stage = "configuration"


class StagingError(LoaderError):
    """The staging table could not be dropped or recreated."""

    stage = "staging"


class WorkerError(LoaderError):
    """One or more workers failed to stage their chunk."""

    stage = "worker"

    def __init__(self, message: str, failed_workers=None):
        super().__init__(message)
        self.failed_workers = list(failed_workers or [])


class MergeError(LoaderError):
    """The insert-or-skip merge or the staging drop failed."""

    stage = "merge"
