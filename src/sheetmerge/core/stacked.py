"""Stack every source sheet into one output sheet, formatting included."""

from __future__ import annotations

from collections.abc import Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.collect import sheets_per_file
from sheetmerge.core.context import MergeContext
from sheetmerge.core.models import SheetSourceRef
from sheetmerge.core.naming import source_label
from sheetmerge.core.sheet_copy import column_widths, copy_cells, copy_merges, copy_row_heights, copy_view

MERGED_SHEET = "Merged"
SOURCE_COLUMN_WIDTH = 6

SOURCE_FONT = Font(bold=True, size=9, color="FFAAAAAA")
SOURCE_FILL = PatternFill(fill_type="solid", fgColor="FF2A2A2A", bgColor="FF2A2A2A")
SOURCE_ALIGNMENT = Alignment(horizontal="center", vertical="top", wrap_text=True, textRotation=90)
SOURCE_BORDER = Border(right=Side(style="thin", color="FF444444"))


def header_row(ws: Worksheet) -> tuple[str, ...]:
    first = next(ws.iter_rows(min_row=1, max_row=1, values_only=True), ())
    values = ["" if v is None else str(v).strip() for v in first]
    while values and not values[-1]:
        values.pop()
    return tuple(values)


def _style_source_cell(ws: Worksheet, row: int, label: str) -> None:
    cell = ws.cell(row=row, column=1, value=label)
    cell.font = SOURCE_FONT
    cell.fill = SOURCE_FILL
    cell.alignment = SOURCE_ALIGNMENT
    cell.border = SOURCE_BORDER


def merge_stacked(
    sources: Sequence[SheetSourceRef],
    ctx: MergeContext,
    *,
    with_source_column: bool = False,
) -> Workbook:
    """Rows of all sources one below the other.

    A later source whose first row repeats the first source's header row
    contributes its data rows only. With ``with_source_column`` each block
    gets a vertically merged label cell in column A.
    """

    wb = Workbook()
    ws = wb.active
    ws.title = MERGED_SHEET
    col_offset = 1 if with_source_column else 0
    counts = sheets_per_file(sources)
    widths: dict[int, float] = {}
    first_header: tuple[str, ...] | None = None
    view_copied = False
    next_row = 1
    total = len(sources)

    for i, source in enumerate(sources):
        ctx.progress(i, total, f"Stacking {source.filename} ({source.sheet_name})")
        src = ctx.load(source)
        if src is None:
            continue
        try:
            header = header_row(src)
            skip = 0
            if first_header is None:
                if header:
                    first_header = header
            elif header and header == first_header:
                skip = 1
            height = copy_cells(src, ws, row_offset=next_row - 1, col_offset=col_offset, skip_rows=skip)
            copy_merges(src, ws, row_offset=next_row - 1, col_offset=col_offset, skip_rows=skip)
            copy_row_heights(src, ws, row_offset=next_row - 1, skip_rows=skip)
            for idx, (width, _hidden) in column_widths(src).items():
                if width is not None and width > widths.get(idx + col_offset, 0):
                    widths[idx + col_offset] = width
            if not view_copied and height:
                copy_view(src, ws, row_offset=next_row - 1, col_offset=col_offset)
                view_copied = True
        except MemoryError:
            raise
        except Exception as exc:
            ctx.warn(source, exc)
            continue

        ctx.mark_copied()
        if height == 0:
            continue
        if with_source_column:
            _style_source_cell(ws, next_row, source_label(source.filename, source.sheet_name, counts[source.file_path]))
            if height > 1:
                ws.merge_cells(start_row=next_row, start_column=1, end_row=next_row + height - 1, end_column=1)
        next_row += height

    for idx, width in widths.items():
        ws.column_dimensions[get_column_letter(idx)].width = width
    if with_source_column and 1 not in widths:
        ws.column_dimensions["A"].width = SOURCE_COLUMN_WIDTH
    ctx.progress(total, total, "Rows stacked")
    return wb


def merge_all_to_one_sheet(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    return merge_stacked(sources, ctx, with_source_column=False)


def merge_all_with_source_column(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    return merge_stacked(sources, ctx, with_source_column=True)
