"""Run one merge in an isolated Python subprocess."""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import signal
import sys
import tempfile
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sheetmerge.adapters.json_logger import JsonLogger
from sheetmerge.core.errors import Cancelled, WorkerCrashed, WorkerOutOfMemory, WorkerTimeout

PROGRESS_PREFIX = "PROGRESS:"
WARNINGS_PREFIX = "WARNINGS:"
ERROR_PREFIX = "sheetmerge-worker: error:"
STDERR_TAIL = 4000
LINE_LIMIT = 1 << 20
EXIT_OUT_OF_MEMORY = 3
OOM_SIGNATURES = ("MemoryError", "Cannot allocate memory", "bad_alloc", "out of memory")

TIMEOUT_MESSAGE = "The merge took longer than {minutes} minutes and was stopped. Try fewer or smaller files."
OOM_MESSAGE = "Not enough memory to merge these files. Try fewer or smaller files."
CANCELLED_MESSAGE = "Merge cancelled."

SRC_ROOT = Path(__file__).resolve().parents[2]
WORKER_COMMAND = (sys.executable, "-m", "sheetmerge.service.worker")

ProgressCallback = Callable[[int, str], None]


@dataclass
class RunResult:
    """Outcome of a worker that exited cleanly."""

    warnings: list[str]
    exit_code: int
    elapsed_ms: int
    stderr_tail: str = ""


@dataclass
class WorkerHandle:
    """Kill switch for a worker that may not have started yet."""

    kill_requested: bool = False
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)

    def attach(self, process: asyncio.subprocess.Process) -> None:
        self.process = process
        if self.kill_requested:
            self._signal()

    def kill(self) -> None:
        self.kill_requested = True
        self._signal()

    def _signal(self) -> None:
        if self.process is not None and self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.process.kill()


def parse_line(line: str) -> tuple[str, Any] | None:
    """Decode one stdout line of the worker protocol, ``None`` for anything else."""

    for prefix, kind in ((PROGRESS_PREFIX, "progress"), (WARNINGS_PREFIX, "warnings")):
        if line.startswith(prefix):
            try:
                return kind, json.loads(line[len(prefix):])
            except json.JSONDecodeError:
                return None
    return None


def is_out_of_memory(exit_code: int, stderr: str, *, killed_by_us: bool) -> bool:
    if exit_code == EXIT_OUT_OF_MEMORY:
        return True
    if any(signature in stderr for signature in OOM_SIGNATURES):
        return True
    return exit_code == -signal.SIGKILL and not killed_by_us


def reported_error(stderr: str) -> str | None:
    for line in reversed(stderr.splitlines()):
        if line.startswith(ERROR_PREFIX):
            return line[len(ERROR_PREFIX):].strip() or None
    return None


class WorkerRunner:
    def __init__(
        self,
        *,
        timeout: float = 300.0,
        memory_mb: int = 2048,
        tmp_dir: str | None = None,
        command: Sequence[str] = WORKER_COMMAND,
        logger: JsonLogger | None = None,
    ) -> None:
        self.timeout = timeout
        self.memory_mb = memory_mb
        self.tmp_dir = tmp_dir
        self.command = tuple(command)
        self._logger = logger or JsonLogger("sheetmerge.runner")

    def _build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        parts = [str(SRC_ROOT), env.get("PYTHONPATH", "")]
        env["PYTHONPATH"] = os.pathsep.join(p for p in parts if p)
        env["SHEETMERGE_WORKER_MEMORY_MB"] = str(self.memory_mb)
        env["PYTHONUNBUFFERED"] = "1"
        return env

    def _write_payload(self, payload: dict[str, Any]) -> str:
        fd, path = tempfile.mkstemp(prefix="sheetmerge-job-", suffix=".json", dir=self.tmp_dir)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, ensure_ascii=False)
        return path

    async def run(
        self,
        payload: dict[str, Any],
        on_progress: ProgressCallback | None = None,
        handle: WorkerHandle | None = None,
    ) -> RunResult:
        """Run the worker for ``payload`` and return its warnings.

        Raises :class:`WorkerTimeout`, :class:`WorkerOutOfMemory`,
        :class:`Cancelled` or :class:`WorkerCrashed` when the worker does not
        exit with status 0.
        """

        handle = handle or WorkerHandle()
        if handle.kill_requested:
            raise Cancelled(CANCELLED_MESSAGE)
        payload_path = self._write_payload(payload)
        log = self._logger.bind(job_id=payload.get("jobId"))
        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                payload_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
                limit=LINE_LIMIT,
            )
            handle.attach(process)
            log.info("worker_spawned", pid=process.pid, timeout_seconds=self.timeout)
            out_stream, err_stream = process.stdout, process.stderr
            if out_stream is None or err_stream is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                raise WorkerCrashed("Merge worker started without output pipes.")

            warnings: list[str] = []
            stderr_chunks: list[str] = []

            async def read_stdout() -> None:
                async for raw in out_stream:
                    parsed = parse_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
                    if parsed is None:
                        continue
                    kind, data = parsed
                    if kind == "progress" and on_progress is not None and isinstance(data, dict):
                        on_progress(int(data.get("pct", 0)), str(data.get("msg", "")))
                    elif kind == "warnings" and isinstance(data, list):
                        warnings[:] = [str(w) for w in data]

            async def read_stderr() -> None:
                while chunk := await err_stream.read(4096):
                    stderr_chunks.append(chunk.decode("utf-8", errors="replace"))
                    tail = "".join(stderr_chunks)[-STDERR_TAIL:]
                    stderr_chunks[:] = [tail]

            try:
                await asyncio.wait_for(
                    asyncio.gather(read_stdout(), read_stderr(), process.wait()),
                    self.timeout,
                )
            except asyncio.CancelledError:
                handle.kill()
                await process.wait()
                raise
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
                log.warn("worker_timeout", pid=process.pid, timeout_seconds=self.timeout)
                minutes = max(1, round(self.timeout / 60))
                raise WorkerTimeout(TIMEOUT_MESSAGE.format(minutes=minutes)) from None

            exit_code = process.returncode if process.returncode is not None else -1
            stderr = "".join(stderr_chunks)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            log.info("worker_exited", pid=process.pid, exit_code=exit_code, elapsed_ms=elapsed_ms)
            if exit_code == 0:
                return RunResult(warnings=warnings, exit_code=0, elapsed_ms=elapsed_ms, stderr_tail=stderr)
            if handle.kill_requested:
                raise Cancelled(CANCELLED_MESSAGE)
            if is_out_of_memory(exit_code, stderr, killed_by_us=handle.kill_requested):
                log.error("worker_out_of_memory", exit_code=exit_code, stderr=stderr[-500:])
                raise WorkerOutOfMemory(OOM_MESSAGE)
            message = reported_error(stderr) or f"Merge worker exited with code {exit_code}."
            log.error("worker_failed", exit_code=exit_code, stderr=stderr[-500:])
            raise WorkerCrashed(message)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.remove(payload_path)
