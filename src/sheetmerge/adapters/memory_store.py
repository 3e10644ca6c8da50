from collections.abc import Iterator
from typing import Generic, TypeVar

JobT = TypeVar("JobT")


class InMemoryJobStore(Generic[JobT]):
    """Dict-backed job registry; lives as long as the coordinator process."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobT] = {}

    def get(self, job_id: str) -> JobT | None:
        return self._jobs.get(job_id)

    def put(self, job_id: str, job: JobT) -> None:
        self._jobs[job_id] = job

    def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def list(self) -> Iterator[JobT]:
        return iter(list(self._jobs.values()))

    def __len__(self) -> int:
        return len(self._jobs)
