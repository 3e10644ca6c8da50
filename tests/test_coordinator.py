import asyncio
import os
import shutil

import pytest

from sheetmerge.config.settings import SheetMergeSettings
from sheetmerge.core.errors import Cancelled, JobNotFound, ValidationError, WorkerCrashed
from sheetmerge.core.models import FileRef, MergeOptions
from sheetmerge.service.coordinator import (
    UNEXPECTED_MESSAGE,
    CancelOutcome,
    JobStatus,
    MergeCoordinator,
    output_filename,
)
from sheetmerge.service.runner import CANCELLED_MESSAGE, RunResult


class StubRunner:
    """Runs nothing; each job blocks until its gate is opened."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.error = error

    def release(self, job_id):
        self.gates.setdefault(job_id, asyncio.Event()).set()

    async def run(self, payload, on_progress=None, handle=None):
        job_id = payload["jobId"]
        self.calls.append(job_id)
        gate = self.gates.setdefault(job_id, asyncio.Event())
        on_progress(50, "half way")
        while not gate.is_set():
            if handle is not None and handle.kill_requested:
                raise Cancelled(CANCELLED_MESSAGE)
            await asyncio.sleep(0.005)
        if self.error is not None:
            raise self.error
        with open(payload["outputPath"], "wb") as fh:
            fh.write(b"xlsx")
        return RunResult(warnings=["south.xlsx: skipped"], exit_code=0, elapsed_ms=1)


def _cfg(tmp_path, **overrides):
    values = {"output_dir": str(tmp_path / "out"), "max_workers": 2, "job_retention_seconds": 300}
    values.update(overrides)
    return SheetMergeSettings(**values)


def _refs(paths):
    return [FileRef(str(p), p.name) for p in paths]


async def _settle(ticks=5):
    for _ in range(ticks):
        await asyncio.sleep(0.01)


def _uploads(tmp_path, paths):
    folder = tmp_path / "uploads"
    folder.mkdir(exist_ok=True)
    return [shutil.copy(p, folder / p.name) for p in paths]


def test_output_filename():
    assert output_filename(None, "xlsx") == "merged.xlsx"
    assert output_filename("report", "xlsx") == "report.xlsx"
    assert output_filename("../a:b.ods", "ods") == "a_b.ods"
    assert output_filename("summary.xlsx", "ods") == "summary.ods"
    assert output_filename("   ", "xlsx") == "merged.xlsx"


@pytest.mark.asyncio
async def test_running_jobs_never_exceed_ceiling(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    options = MergeOptions(mode="all_to_one_sheet")
    ids = [coordinator.submit(_refs(amount_files), options) for _ in range(5)]
    await _settle()

    assert coordinator.running == 2
    assert coordinator.queued == 3
    assert runner.calls == ids[:2]
    queued = [coordinator.get(job_id).events.history[0].to_dict() for job_id in ids[2:]]
    assert queued == [{"type": "queued", "position": p} for p in (1, 2, 3)]

    for job_id in ids:
        runner.release(job_id)
        await _settle(2)
        assert coordinator.running <= 2
    finals = [await coordinator.wait(job_id) for job_id in ids]

    assert runner.calls == ids
    assert all(event["type"] == "complete" for event in finals)
    assert coordinator.running == 0
    assert coordinator.queued == 0
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_completed_job_reports_output_and_warnings(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="row_per_file"), preferred_output_name="report")
    waiter = asyncio.create_task(coordinator.wait(job_id))
    await _settle()
    runner.release(job_id)
    final = await asyncio.wait_for(waiter, 2)

    job = coordinator.get(job_id)
    assert final == {
        "type": "complete",
        "downloadRef": job.output_path,
        "filename": "report.xlsx",
        "warnings": ["south.xlsx: skipped"],
    }
    assert job.status is JobStatus.DONE
    assert os.path.exists(job.output_path)
    kinds = [event.to_dict()["type"] for event in job.events.history]
    assert kinds == ["progress", "progress", "complete"]
    assert [e.pct for e in job.events.history[:2]] == [0, 50]
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_cancel_while_queued_never_starts_worker(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path, max_workers=1))
    options = MergeOptions(mode="all_to_one_sheet")
    first = coordinator.submit(_refs(amount_files), options)
    second = coordinator.submit(_refs(amount_files), options)
    await _settle()

    assert coordinator.cancel(second) is CancelOutcome.OK
    runner.release(first)
    final = await asyncio.wait_for(coordinator.wait(second), 2)

    assert final == {"type": "error", "message": CANCELLED_MESSAGE}
    assert runner.calls == [first]
    assert coordinator.get(second).status is JobStatus.ERROR
    assert coordinator.running == 0
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_cancel_running_job(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    await _settle()

    assert coordinator.get(job_id).status is JobStatus.RUNNING
    assert coordinator.cancel(job_id) is CancelOutcome.OK
    final = await asyncio.wait_for(coordinator.wait(job_id), 2)

    assert final == {"type": "error", "message": CANCELLED_MESSAGE}
    assert coordinator.cancel(job_id) is CancelOutcome.NOT_CANCELLABLE
    assert coordinator.cancel("missing") is CancelOutcome.NOT_FOUND
    assert not os.path.exists(coordinator.get(job_id).output_path)
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_worker_failure_becomes_error_event(tmp_path, amount_files):
    runner = StubRunner(error=WorkerCrashed("Sheet could not be parsed."))
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    runner.release(job_id)
    final = await asyncio.wait_for(coordinator.wait(job_id), 2)

    assert final == {"type": "error", "message": "Sheet could not be parsed."}
    assert coordinator.get(job_id).error == "Sheet could not be parsed."
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_unexpected_failure_hides_details(tmp_path, amount_files):
    runner = StubRunner(error=KeyError("internal"))
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    runner.release(job_id)
    final = await asyncio.wait_for(coordinator.wait(job_id), 2)
    assert final == {"type": "error", "message": UNEXPECTED_MESSAGE}
    assert coordinator.running == 0
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_invalid_input_creates_no_job(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    legacy = tmp_path / "old.xls"
    legacy.write_bytes(b"xls")

    with pytest.raises(ValidationError):
        coordinator.submit([], MergeOptions(mode="all_to_one_sheet"))
    with pytest.raises(ValidationError):
        coordinator.submit(_refs([legacy]), MergeOptions(mode="all_to_one_sheet"))
    with pytest.raises(JobNotFound):
        coordinator.subscribe("missing")
    assert runner.calls == []
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_finished_jobs_are_evicted_after_retention(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path, job_retention_seconds=0.05))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    runner.release(job_id)
    await asyncio.wait_for(coordinator.wait(job_id), 2)
    output = coordinator.get(job_id).output_path

    await asyncio.sleep(0.2)
    assert coordinator.get(job_id) is None
    assert os.path.exists(output)
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_evict_expired_uses_clock(tmp_path, amount_files):
    now = [1000.0]
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path), clock=lambda: now[0])
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    runner.release(job_id)
    await asyncio.wait_for(coordinator.wait(job_id), 2)

    assert coordinator.evict_expired(now=1100.0) == []
    assert coordinator.evict_expired(now=1300.0) == [job_id]
    assert coordinator.get(job_id) is None
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_aclose_cancels_pending_jobs(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path, max_workers=1))
    options = MergeOptions(mode="all_to_one_sheet")
    ids = [coordinator.submit(_refs(amount_files), options) for _ in range(2)]
    await _settle()

    await asyncio.wait_for(coordinator.aclose(), 2)
    for job_id in ids:
        job = coordinator.get(job_id)
        assert job.status is JobStatus.ERROR
        assert job.events.terminal.to_dict() == {"type": "error", "message": CANCELLED_MESSAGE}
    assert coordinator.running == 0


@pytest.mark.asyncio
async def test_cleanup_inputs_removes_uploads_after_completion(tmp_path, amount_files):
    uploads = _uploads(tmp_path, amount_files)
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(
        [FileRef(str(p), os.path.basename(p)) for p in uploads],
        MergeOptions(mode="all_to_one_sheet"),
        cleanup_inputs=True,
    )
    await _settle()
    assert all(os.path.exists(p) for p in uploads)
    runner.release(job_id)
    final = await asyncio.wait_for(coordinator.wait(job_id), 2)
    await _settle(1)

    assert final["type"] == "complete"
    assert not any(os.path.exists(p) for p in uploads)
    assert os.path.exists(coordinator.get(job_id).output_path)
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_cleanup_inputs_removes_uploads_after_failure(tmp_path, amount_files):
    uploads = _uploads(tmp_path, amount_files)
    runner = StubRunner(error=WorkerCrashed("Sheet could not be parsed."))
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(
        [FileRef(str(p), os.path.basename(p)) for p in uploads],
        MergeOptions(mode="all_to_one_sheet"),
        cleanup_inputs=True,
    )
    await _settle()
    os.remove(uploads[0])
    runner.release(job_id)
    final = await asyncio.wait_for(coordinator.wait(job_id), 2)
    await _settle(1)

    assert final == {"type": "error", "message": "Sheet could not be parsed."}
    assert not os.path.exists(uploads[1])
    await coordinator.aclose()


@pytest.mark.asyncio
async def test_inputs_stay_without_cleanup_flag(tmp_path, amount_files):
    runner = StubRunner()
    coordinator = MergeCoordinator(runner, cfg=_cfg(tmp_path))
    job_id = coordinator.submit(_refs(amount_files), MergeOptions(mode="all_to_one_sheet"))
    runner.release(job_id)
    await asyncio.wait_for(coordinator.wait(job_id), 2)
    await _settle(1)

    assert all(p.exists() for p in amount_files)
    await coordinator.aclose()
