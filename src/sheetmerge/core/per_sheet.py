from __future__ import annotations

from collections.abc import Sequence

from openpyxl import Workbook

from sheetmerge.core.collect import sheets_per_file
from sheetmerge.core.context import MergeContext
from sheetmerge.core.models import SheetSourceRef
from sheetmerge.core.naming import file_base_name, generate_sheet_name
from sheetmerge.core.sheet_copy import copy_worksheet


def copy_sources_as_sheets(
    wb: Workbook,
    sources: Sequence[SheetSourceRef],
    ctx: MergeContext,
    used: set[str],
    *,
    start: float = 0.0,
    end: float = 100.0,
) -> None:
    """Append one fully formatted sheet per source to ``wb``."""

    counts = sheets_per_file(sources)
    total = len(sources)
    for i, source in enumerate(sources):
        ctx.progress(i, total, f"Copying {source.filename} ({source.sheet_name})", start, end)
        src = ctx.load(source)
        if src is None:
            continue
        title = generate_sheet_name(file_base_name(source.filename), source.sheet_name, counts[source.file_path], used)
        dest = wb.create_sheet(title=title)
        try:
            copy_worksheet(src, dest)
        except MemoryError:
            raise
        except Exception as exc:
            wb.remove(dest)
            used.discard(title)
            ctx.warn(source, exc)
            continue
        ctx.mark_copied()
    ctx.progress(total, total, "Sheets copied", start, end)


def merge_one_file_per_sheet(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    wb = Workbook()
    wb.remove(wb.active)
    copy_sources_as_sheets(wb, sources, ctx, set())
    return wb
