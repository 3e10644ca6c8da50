from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn, TimeRemainingColumn

from sheetmerge.adapters.atomic import WorkbookFileSink
from sheetmerge.adapters.json_logger import JsonLogger, configure_logging
from sheetmerge.adapters.office import OfficeOdsExporter
from sheetmerge.adapters.workbook_io import WorkbookLoader
from sheetmerge.config.settings import LOG_LEVEL_CHOICES, normalize_log_level, settings
from sheetmerge.core.errors import SheetMergeError, ValidationError
from sheetmerge.core.merge import merge_spreadsheets
from sheetmerge.core.models import MERGE_MODES, FileRef, MergeOptions
from sheetmerge.core.options import limits_from_settings, parse_merge_options, validate_files
from sheetmerge.core.preview import PREVIEW_MAX_ROWS, merge_preview
from sheetmerge.service.coordinator import MergeCoordinator
from sheetmerge.service.runner import WorkerRunner

app = typer.Typer(no_args_is_help=True, add_completion=False, rich_markup_mode=None)


def _make_logger(fmt: str, level: str, file: str | None) -> JsonLogger:
    configure_logging(level=getattr(logging, level.upper(), logging.INFO), fmt=fmt, file=file)
    return JsonLogger("sheetmerge.cli")


def _emit(result: dict[str, Any] | list[Any]) -> None:
    typer.echo(json.dumps(result, indent=2, ensure_ascii=False))


def _file_refs(paths: list[str]) -> list[FileRef]:
    return [FileRef(path=os.path.abspath(p), filename=os.path.basename(p)) for p in paths]


def _parse_select(entries: list[str]) -> dict[str, list[int]]:
    """``--select report.xlsx=0,2`` → ``{"report.xlsx": [0, 2]}``."""

    selected: dict[str, list[int]] = {}
    for entry in entries:
        name, sep, raw = entry.rpartition("=")
        if not sep or not name.strip():
            raise ValidationError(f"--select expects FILE=INDEX[,INDEX...], got '{entry}'.")
        indices: list[int] = []
        for token in (part.strip() for part in raw.split(",")):
            if not token:
                continue
            if not token.isdigit():
                raise ValidationError(f"Invalid sheet index '{token}' in --select.")
            indices.append(int(token))
        selected[os.path.basename(name.strip())] = indices
    return selected


def build_options(
    mode: str,
    out_format: str,
    sheets: str,
    select: list[str],
    include: list[str],
    exclude: list[str],
    match: str,
    case_sensitive: bool,
) -> MergeOptions:
    if include and exclude:
        raise ValidationError("Use either --include or --exclude, not both.")
    raw: dict[str, Any] = {
        "mode": mode,
        "sheetSelectionMode": sheets,
        "outputFormat": out_format.lower(),
    }
    if select:
        raw["selectedSheets"] = _parse_select(select)
    if include or exclude:
        raw["sheetNameFilter"] = {
            "mode": "include" if include else "exclude",
            "values": include or exclude,
            "match": match,
            "caseSensitive": case_sensitive,
        }
    return parse_merge_options(raw)


class MergeProgress:
    """Single-bar rich progress display fed with ``(pct, msg)`` updates."""

    def __init__(self) -> None:
        self._progress = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=Console(stderr=True),
            transient=True,
        )
        self._task: Any = None

    def __enter__(self) -> "MergeProgress":
        self._progress.__enter__()
        self._task = self._progress.add_task("Waiting", total=100)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    def update(self, pct: int, msg: str) -> None:
        self._progress.update(self._task, completed=pct, description=msg)

    def queued(self, position: int) -> None:
        self._progress.update(self._task, description=f"Queued (position {position})")


async def _merge_with_worker(
    files: list[FileRef], options: MergeOptions, out: str, progress: MergeProgress, logger: JsonLogger
) -> dict[str, Any]:
    runner = WorkerRunner(
        timeout=settings.worker_timeout_seconds,
        memory_mb=settings.worker_memory_mb,
        tmp_dir=settings.temp_dir,
    )
    coordinator = MergeCoordinator(runner, cfg=settings, logger=logger)
    try:
        job_id = coordinator.submit(files, options, preferred_output_name=os.path.basename(out))
        last: dict[str, Any] = {}
        async for event in coordinator.subscribe(job_id):
            last = event
            if event["type"] == "queued":
                progress.queued(event["position"])
            elif event["type"] == "progress":
                progress.update(event["pct"], event["msg"])
        if last.get("type") != "complete":
            raise SheetMergeError(last.get("message") or "The merge did not finish.")
        os.makedirs(os.path.dirname(os.path.abspath(out)) or ".", exist_ok=True)
        shutil.move(last["downloadRef"], out)
        return {"job": job_id, "output": out, "filename": last["filename"], "warnings": last["warnings"]}
    finally:
        await coordinator.aclose()


@app.callback()
def main(
    log_format: Annotated[str, typer.Option("--log")] = settings.log_format,
    log_level: Annotated[str, typer.Option("--log-level")] = settings.log_level,
    log_file: Annotated[str | None, typer.Option("--log-file")] = None,
):
    if log_format not in {"json", "text"}:
        raise typer.BadParameter("--log must be either 'json' or 'text'.")
    log_level = normalize_log_level(log_level)
    if log_level not in LOG_LEVEL_CHOICES:
        raise typer.BadParameter("--log-level must be DEBUG, INFO, WARN, or ERROR.")
    app.state = {"logger": _make_logger(log_format, log_level, log_file)}


@app.command(help="Merge spreadsheet files (xlsx, ods, csv) into one workbook.")
def merge(
    files: Annotated[list[str], typer.Argument(help="Input files.")],
    mode: Annotated[str, typer.Option("--mode", help=", ".join(MERGE_MODES))] = "all_to_one_sheet",
    out: Annotated[str | None, typer.Option("--out")] = None,
    out_format: Annotated[str, typer.Option("--format")] = "xlsx",
    sheets: Annotated[str, typer.Option("--sheets")] = "all",
    select: Annotated[list[str] | None, typer.Option("--select", help="FILE=INDEX[,INDEX...]")] = None,
    include: Annotated[list[str] | None, typer.Option("--include")] = None,
    exclude: Annotated[list[str] | None, typer.Option("--exclude")] = None,
    match: Annotated[str, typer.Option("--match")] = "exact",
    case_sensitive: Annotated[bool, typer.Option("--case-sensitive")] = False,
    in_process: Annotated[bool, typer.Option("--in-process")] = False,
):
    logger = app.state["logger"]
    try:
        options = build_options(
            mode, out_format, sheets, select or [], include or [], exclude or [], match, case_sensitive
        )
        out_path = out or f"merged.{options.output_format}"
        refs = _file_refs(files)
        with MergeProgress() as progress:
            if in_process:
                validate_files(refs, limits_from_settings(settings))
                exporter = OfficeOdsExporter(
                    binaries=settings.office_binaries,
                    timeout=settings.office_timeout_seconds,
                    tmp_dir=settings.temp_dir,
                    logger=logger,
                )
                merged = merge_spreadsheets(
                    refs,
                    options,
                    out_path,
                    loader=WorkbookLoader(),
                    sink=WorkbookFileSink(),
                    exporter=exporter,
                    hooks=[progress.update],
                )
                result = {"output": merged.output_path, "sheets": merged.sheets, "warnings": merged.warnings}
            else:
                result = asyncio.run(_merge_with_worker(refs, options, out_path, progress, logger))
        result["mode"] = options.mode
        result["files"] = len(refs)
        logger.info("merge_completed", output=result["output"], warnings=len(result["warnings"]))
        _emit(result)
    except typer.Exit:
        raise
    except SheetMergeError as e:
        logger.error("merge_failed", error=str(e))
        raise typer.Exit(code=2)
    except Exception as e:
        logger.error("merge_crash", error=str(e))
        raise typer.Exit(code=1)


@app.command(help="List the sheets of a file with their indices.")
def sheets(file: Annotated[str, typer.Argument(help="Input file.")]):
    logger = app.state["logger"]
    try:
        names = WorkbookLoader().sheet_names(_file_refs([file])[0])
        _emit({"file": os.path.basename(file), "sheets": [{"index": i, "name": n} for i, n in enumerate(names)]})
    except SheetMergeError as e:
        logger.error("sheets_failed", error=str(e))
        raise typer.Exit(code=2)
    except Exception as e:
        logger.error("sheets_crash", error=str(e))
        raise typer.Exit(code=1)


@app.command(help="Show the first rows a merge would produce.")
def preview(
    files: Annotated[list[str], typer.Argument(help="Input files.")],
    mode: Annotated[str, typer.Option("--mode", help=", ".join(MERGE_MODES))] = "all_to_one_sheet",
    limit: Annotated[int, typer.Option("--limit", min=1)] = PREVIEW_MAX_ROWS,
):
    logger = app.state["logger"]
    try:
        if mode not in MERGE_MODES:
            raise ValidationError(f"Unknown merge mode '{mode}'. Expected one of: {', '.join(MERGE_MODES)}.")
        _emit(merge_preview(_file_refs(files), mode, WorkbookLoader(), max_rows=limit))
    except SheetMergeError as e:
        logger.error("preview_failed", error=str(e))
        raise typer.Exit(code=2)
    except Exception as e:
        logger.error("preview_crash", error=str(e))
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
