"""State shared by every repository job: completion flag, errors and output."""

import logging
import threading

from repobuilder.errors import JobError
from repobuilder.models import OutputRecord

logger = logging.getLogger(__name__)


class JobBase:
    """Thread-safe bookkeeping for a job that runs exactly once.

    Mirror threads append to the error list and output log concurrently;
    both are guarded by a single lock per job.
    """

    def __init__(self, job_id: str):
        self.id = job_id
        self._lock = threading.Lock()
        self._complete = False
        self._errors: list[BaseException] = []
        self._output: list[OutputRecord] = []

    @property
    def is_complete(self) -> bool:
        with self._lock:
            return self._complete

    def mark_complete(self) -> None:
        with self._lock:
            self._complete = True

    def add_error(self, err: BaseException) -> None:
        with self._lock:
            if self._complete:
                raise RuntimeError(f"job {self.id} is complete, its errors are frozen")
            self._errors.append(err)

    @property
    def errors(self) -> list[BaseException]:
        with self._lock:
            return list(self._errors)

    def has_errors(self) -> bool:
        with self._lock:
            return bool(self._errors)

    def error(self) -> JobError | None:
        """Return every recorded error composed into one, or None."""
        with self._lock:
            if not self._errors:
                return None
            return JobError(self.id, self._errors)

    def record_output(
        self, phase: str, mirror: str, target: str, stdout: str, error: str | None = None
    ) -> None:
        """Append an entry to the output log."""
        with self._lock:
            self._output.append(OutputRecord(phase, mirror, target, stdout, error))

    @property
    def output(self) -> list[OutputRecord]:
        with self._lock:
            return list(self._output)
