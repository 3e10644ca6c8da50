from collections.abc import Iterator
from typing import Protocol, TypeVar

JobT = TypeVar("JobT")


class JobStore(Protocol[JobT]):
    def get(self, job_id: str) -> JobT | None: ...
    def put(self, job_id: str, job: JobT) -> None: ...
    def delete(self, job_id: str) -> None: ...
    def list(self) -> Iterator[JobT]: ...
