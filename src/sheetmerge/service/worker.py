"""Worker process: ``python -m sheetmerge.service.worker <payload.json>``.

Reads one job description, runs the merge and reports over stdout with
``PROGRESS:{json}`` lines followed by a single ``WARNINGS:[json]`` line.
Diagnostics go to stderr. The exit status carries the outcome.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from collections.abc import Sequence
from typing import Any

from sheetmerge.adapters.atomic import WorkbookFileSink
from sheetmerge.adapters.json_logger import JsonLogger, configure_logging
from sheetmerge.adapters.office import OfficeOdsExporter
from sheetmerge.adapters.workbook_io import WorkbookLoader
from sheetmerge.config.settings import settings
from sheetmerge.core.errors import SheetMergeError, ValidationError
from sheetmerge.core.merge import merge_spreadsheets
from sheetmerge.core.models import FileRef, MergeOptions
from sheetmerge.core.options import parse_file_refs, parse_merge_options
from sheetmerge.service.runner import ERROR_PREFIX, EXIT_OUT_OF_MEMORY, PROGRESS_PREFIX, WARNINGS_PREFIX

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2

logger = JsonLogger("sheetmerge.worker")


def apply_memory_limit() -> None:
    try:
        limit_mb = int(os.environ.get("SHEETMERGE_WORKER_MEMORY_MB", "0") or 0)
    except ValueError:
        limit_mb = 0
    if limit_mb <= 0:
        return
    try:
        import resource
    except ImportError:  # not available on Windows
        return
    limit = limit_mb * 1024 * 1024
    try:
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))
    except (ValueError, OSError) as exc:
        logger.warn("memory_limit_unsupported", limit_mb=limit_mb, error=str(exc))


def load_payload(path: str) -> tuple[list[FileRef], MergeOptions, str]:
    with open(path, encoding="utf-8") as fh:
        payload: Any = json.load(fh)
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object.")
    raw_options = dict(payload.get("options") or {})
    if payload.get("selectedSheets") and not raw_options.get("selectedSheets"):
        raw_options["selectedSheets"] = payload["selectedSheets"]
    output_path = payload.get("outputPath")
    if not isinstance(output_path, str) or not output_path:
        raise ValidationError("outputPath must be a non-empty string.")
    return parse_file_refs(payload.get("files")), parse_merge_options(raw_options), output_path


def _emit(prefix: str, data: Any) -> None:
    sys.stdout.write(prefix + json.dumps(data, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _report_progress(pct: int, msg: str) -> None:
    _emit(PROGRESS_PREFIX, {"pct": pct, "msg": msg})


def _fail(message: str) -> None:
    sys.stderr.write(f"{ERROR_PREFIX} {message}\n")
    sys.stderr.flush()


def main(argv: Sequence[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    configure_logging(
        level=getattr(logging, settings.log_level, logging.INFO),
        fmt=settings.log_format,
        stream=sys.stderr,
    )
    if len(args) != 1:
        _fail("usage: python -m sheetmerge.service.worker <payload.json>")
        return EXIT_USAGE
    try:
        files, options, output_path = load_payload(args[0])
    except (OSError, ValueError, SheetMergeError) as exc:
        _fail(f"invalid payload: {exc}")
        return EXIT_USAGE

    apply_memory_limit()
    exporter = OfficeOdsExporter(
        binaries=settings.office_binaries,
        timeout=settings.office_timeout_seconds,
        tmp_dir=settings.temp_dir,
    )
    try:
        result = merge_spreadsheets(
            files,
            options,
            output_path,
            loader=WorkbookLoader(),
            sink=WorkbookFileSink(),
            exporter=exporter,
            hooks=[_report_progress],
        )
    except MemoryError:
        _fail("MemoryError: not enough memory to finish the merge")
        return EXIT_OUT_OF_MEMORY
    except SheetMergeError as exc:
        logger.error("worker_failed", error=str(exc))
        _fail(str(exc))
        return EXIT_FAILED
    except Exception as exc:
        logger.error("worker_crash", error=str(exc))
        traceback.print_exc(file=sys.stderr)
        _fail(f"Unexpected error: {exc}")
        return EXIT_FAILED

    _emit(WARNINGS_PREFIX, result.warnings)
    logger.info("worker_done", output=result.output_path, sheets=len(result.sheets), warnings=len(result.warnings))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
