"""One row per source sheet, one column per used cell address."""

from __future__ import annotations

from collections.abc import Sequence

from openpyxl import Workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.collect import sheets_per_file
from sheetmerge.core.consolidated import numeric_value
from sheetmerge.core.context import MergeContext
from sheetmerge.core.models import SheetSourceRef
from sheetmerge.core.naming import source_label

OVERVIEW_SHEET = "Übersicht"
HEADER_LABEL = "Datei / Datum"
TOTAL_LABEL = "Gesamt"
NUMBER_FORMAT = "#,##0.00"

HEADER_BG = "FF1E293B"
ODD_BG = "FF0A1628"
EVEN_BG = "FF0F1F35"
TOTAL_BG = "FF064E3B"
BORDER_COLOR = "FF1E3A5F"
HEADER_FG = "FFE2E8F0"
DATA_FG = "FFCBD5E1"
TOTAL_FG = "FF34D399"
NUMBER_FG = "FF7DD3FC"

LABEL_WIDTH = 14
VALUE_WIDTH = 11
HEADER_HEIGHT = 20
DATA_HEIGHT = 16
TOTAL_HEIGHT = 20

CellKey = tuple[int, int]

_EDGE = Side(style="thin", color=BORDER_COLOR)
_BORDER = Border(left=_EDGE, right=_EDGE, top=_EDGE, bottom=_EDGE)


def _fill(color: str) -> PatternFill:
    return PatternFill(fill_type="solid", fgColor=color, bgColor=color)


def _has_content(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def active_cells(sources: Sequence[SheetSourceRef], ctx: MergeContext, start: float, end: float) -> list[CellKey]:
    """Addresses holding a value in at least one source, in row-major order."""

    found: set[CellKey] = set()
    total = len(sources)
    for i, source in enumerate(sources):
        ctx.progress(i, total, f"Scanning {source.filename} ({source.sheet_name})", start, end)
        ws = ctx.load(source, data_only=True)
        if ws is None:
            continue
        for row in ws.iter_rows():
            for cell in row:
                if not isinstance(cell, MergedCell) and _has_content(cell.value):
                    found.add((cell.row, cell.column))
    return sorted(found)


def _row_values(ws: Worksheet, index: dict[CellKey, int]) -> list[object]:
    values: list[object] = [None] * len(index)
    for row in ws.iter_rows():
        for cell in row:
            slot = index.get((cell.row, cell.column))
            if slot is not None and not isinstance(cell, MergedCell):
                values[slot] = cell.value
    return values


def _style_row(ws: Worksheet, row: int, width: int, *, fill: PatternFill, font: Font, number_font: Font | None = None) -> None:
    for col in range(1, width + 1):
        cell = ws.cell(row=row, column=col)
        cell.fill = fill
        cell.border = _BORDER
        if number_font is not None and col > 1 and numeric_value(cell.value) is not None:
            cell.font = number_font
            cell.number_format = NUMBER_FORMAT
            cell.alignment = Alignment(horizontal="right", vertical="center")
        else:
            cell.font = font
            cell.alignment = Alignment(vertical="center")


def merge_row_per_file(sources: Sequence[SheetSourceRef], ctx: MergeContext, *, with_sum: bool = True) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = OVERVIEW_SHEET

    keys = active_cells(sources, ctx, 0, 40)
    index = {key: i for i, key in enumerate(keys)}
    width = len(keys) + 1

    ws.append([HEADER_LABEL] + [f"{get_column_letter(c)}{r}" for r, c in keys])
    _style_row(ws, 1, width, fill=_fill(HEADER_BG), font=Font(bold=True, color=HEADER_FG))
    ws.row_dimensions[1].height = HEADER_HEIGHT

    counts = sheets_per_file(sources)
    totals: list[int | float | None] = [None] * len(keys)
    data_font = Font(color=DATA_FG)
    number_font = Font(color=NUMBER_FG)
    out_row = 1
    total = len(sources)
    for i, source in enumerate(sources):
        ctx.progress(i, total, f"Collecting {source.filename} ({source.sheet_name})", 40, 100)
        src = ctx.load(source, data_only=True)
        if src is None:
            continue
        values = _row_values(src, index)
        for slot, value in enumerate(values):
            number = numeric_value(value)
            if number is not None:
                totals[slot] = (totals[slot] or 0) + number
        label = source_label(source.filename, source.sheet_name, counts[source.file_path], date_label=True)
        ws.append([label] + values)
        out_row += 1
        fill = _fill(ODD_BG if out_row % 2 == 0 else EVEN_BG)
        _style_row(ws, out_row, width, fill=fill, font=data_font, number_font=number_font)
        ws.row_dimensions[out_row].height = DATA_HEIGHT
        ctx.mark_copied()

    if with_sum:
        ws.append([TOTAL_LABEL] + totals)
        out_row += 1
        total_font = Font(bold=True, color=TOTAL_FG)
        _style_row(ws, out_row, width, fill=_fill(TOTAL_BG), font=total_font, number_font=total_font)
        ws.row_dimensions[out_row].height = TOTAL_HEIGHT

    ws.column_dimensions["A"].width = LABEL_WIDTH
    for col in range(2, width + 1):
        ws.column_dimensions[get_column_letter(col)].width = VALUE_WIDTH
    ws.freeze_panes = "B2"
    ctx.progress(total, total, "Matrix built", 40, 100)
    return wb


def merge_row_per_file_with_sum(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    return merge_row_per_file(sources, ctx, with_sum=True)


def merge_row_per_file_no_sum(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    return merge_row_per_file(sources, ctx, with_sum=False)
