"""Summary sheet with cell-address sums plus one copy per source sheet."""

from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import Decimal

from openpyxl import Workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.worksheet.formula import ArrayFormula

from sheetmerge.core.context import MergeContext
from sheetmerge.core.errors import NoSheetsMatched
from sheetmerge.core.models import SheetSourceRef
from sheetmerge.core.naming import dedupe_sheet_name
from sheetmerge.core.per_sheet import copy_sources_as_sheets
from sheetmerge.core.sheet_copy import StyleSnapshot, copy_worksheet, is_formula

SUMMARY_SHEET = "Zusammenfassung"

CellKey = tuple[int, int]


def numeric_value(value: object) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def collect_sums(
    sources: Sequence[SheetSourceRef],
    ctx: MergeContext,
    template_empty: set[CellKey],
    *,
    start: float = 0.0,
    end: float = 100.0,
) -> tuple[dict[CellKey, int | float], dict[CellKey, StyleSnapshot]]:
    """Sum cached numeric values by address across ``sources``.

    Formula cells contribute their cached result, read through the
    ``data_only`` view. Addresses empty in the template remember the first
    styled cell found elsewhere.
    """

    sums: dict[CellKey, int | float] = {}
    donors: dict[CellKey, StyleSnapshot] = {}
    total = len(sources)
    for i, source in enumerate(sources):
        ctx.progress(i, total, f"Summing {source.filename} ({source.sheet_name})", start, end)
        values = ctx.load(source, data_only=True)
        if values is None:
            continue
        for row in values.iter_rows():
            for cell in row:
                if isinstance(cell, MergedCell):
                    continue
                key = (cell.row, cell.column)
                number = numeric_value(cell.value)
                if number is not None:
                    sums[key] = sums.get(key, 0) + number
                if key in template_empty and key not in donors and cell.has_style:
                    donors[key] = StyleSnapshot.capture(cell)
    return sums, donors


def merge_consolidated(sources: Sequence[SheetSourceRef], ctx: MergeContext) -> Workbook:
    template_source = None
    template = None
    for source in sources:
        template = ctx.load(source)
        if template is not None:
            template_source = source
            break
    if template is None or template_source is None:
        raise NoSheetsMatched("None of the selected sheets could be read.")

    wb = Workbook()
    summary = wb.active
    used: set[str] = set()
    summary.title = dedupe_sheet_name(SUMMARY_SHEET, used)
    copy_worksheet(template, summary)

    template_empty = {
        (cell.row, cell.column)
        for row in template.iter_rows()
        for cell in row
        if cell.value is None and not isinstance(cell, MergedCell)
    }
    template = None
    sums, donors = collect_sums(sources, ctx, template_empty, start=0, end=50)

    # formula text stays, its cached result becomes the address sum
    results: dict[str, int | float] = {}
    for row in summary.iter_rows():
        for cell in row:
            if isinstance(cell, MergedCell):
                continue
            if is_formula(cell.value) or isinstance(cell.value, ArrayFormula):
                results[cell.coordinate] = sums.get((cell.row, cell.column), 0)
    ctx.formula_results[summary.title] = results

    for (r, c), total in sums.items():
        target = summary.cell(row=r, column=c)
        if isinstance(target, MergedCell) or target.coordinate in results:
            continue
        current = target.value
        if isinstance(current, str):
            continue
        target.value = total
        donor = donors.get((r, c))
        if current is None and donor is not None:
            donor.apply(target)

    copy_sources_as_sheets(wb, sources, ctx, used, start=50, end=100)
    return wb
