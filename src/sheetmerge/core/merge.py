from __future__ import annotations

import contextlib
import os
from collections.abc import Callable, Sequence

from openpyxl import Workbook

from sheetmerge.core.collect import collect_sheet_sources
from sheetmerge.core.consolidated import merge_consolidated
from sheetmerge.core.context import MergeContext
from sheetmerge.core.errors import NoSheetsMatched, ValidationError
from sheetmerge.core.matrix import merge_row_per_file_no_sum, merge_row_per_file_with_sum
from sheetmerge.core.models import FileRef, MergeOptions, MergeResult, SheetSourceRef
from sheetmerge.core.per_sheet import merge_one_file_per_sheet
from sheetmerge.core.progress import ProgressHook, emit_progress, scaled
from sheetmerge.core.stacked import merge_all_to_one_sheet, merge_all_with_source_column
from sheetmerge.ports.readers import SheetLoader
from sheetmerge.ports.writers import OdsExporter, WorkbookSink

Strategy = Callable[[Sequence[SheetSourceRef], MergeContext], Workbook]

STRATEGIES: dict[str, Strategy] = {
    "one_file_per_sheet": merge_one_file_per_sheet,
    "consolidated_sheets": merge_consolidated,
    "all_to_one_sheet": merge_all_to_one_sheet,
    "all_with_source_column": merge_all_with_source_column,
    "row_per_file": merge_row_per_file_with_sum,
    "row_per_file_no_sum": merge_row_per_file_no_sum,
}

NOTHING_READABLE = "None of the selected sheets could be read."


def build_workbook(
    sources: Sequence[SheetSourceRef],
    options: MergeOptions,
    ctx: MergeContext,
) -> Workbook:
    strategy = STRATEGIES.get(options.mode)
    if strategy is None:
        raise ValidationError(f"Unknown merge mode '{options.mode}'.")
    wb = strategy(sources, ctx)
    if ctx.copied == 0:
        raise NoSheetsMatched(NOTHING_READABLE)
    return wb


def default_output_name(output_format: str) -> str:
    return f"merged.{output_format}"


def merge_spreadsheets(
    files: Sequence[FileRef],
    options: MergeOptions,
    output_path: str,
    loader: SheetLoader,
    sink: WorkbookSink,
    exporter: OdsExporter | None = None,
    hooks: Sequence[ProgressHook] = (),
) -> MergeResult:
    """Merge ``files`` into ``output_path`` with the strategy named by ``options.mode``.

    Progress runs 0–20 % while sheets are collected, 20–95 % inside the
    strategy and 95–100 % while writing. Unreadable files and sheets end up
    in ``MergeResult.warnings``; the merge fails only when nothing is left.
    """

    if options.output_format == "ods" and exporter is None:
        raise ValidationError("ODS output requires an exporter.")
    warnings: list[str] = []
    sources = collect_sheet_sources(files, options, loader, warnings, scaled(hooks, 0, 20))
    ctx = MergeContext(loader=loader, warnings=warnings, hooks=scaled(hooks, 20, 95))
    try:
        wb = build_workbook(sources, options, ctx)
    finally:
        loader.release()

    emit_progress(hooks, 95, "Writing output")
    sheets = list(wb.sheetnames)
    if options.output_format == "ods" and exporter is not None:
        intermediate = f"{os.path.splitext(output_path)[0]}.intermediate.xlsx"
        try:
            sink.save(wb, intermediate, ctx.formula_results)
            del wb
            exporter.export(intermediate, output_path)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.remove(intermediate)
    else:
        sink.save(wb, output_path, ctx.formula_results)
    emit_progress(hooks, 100, "Merge complete")
    return MergeResult(output_path=output_path, warnings=warnings, sheets=sheets)
