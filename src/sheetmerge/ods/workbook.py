"""Build an openpyxl workbook, formatting included, from ODS bytes."""

from __future__ import annotations

from datetime import datetime

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.naming import dedupe_sheet_name, sanitize_sheet_name, truncate_sheet_name
from sheetmerge.ods.parser import NUMERIC_TYPES, OdsCell, OdsTable, read_ods_archive, read_tables
from sheetmerge.ods.styles import BorderDef, CellStyleDef, StyleMap, build_style_map


def _side(edge: BorderDef | None) -> Side:
    if edge is None:
        return Side()
    return Side(style=edge.style, color=edge.color)


def style_attributes(style: CellStyleDef) -> dict[str, object]:
    """openpyxl style objects for a resolved :class:`CellStyleDef`."""

    attrs: dict[str, object] = {}
    if style.background:
        attrs["fill"] = PatternFill(fill_type="solid", fgColor=style.background, bgColor=style.background)
    if any(v is not None for v in (style.bold, style.italic, style.underline, style.font_color, style.font_size, style.font_name)):
        attrs["font"] = Font(
            name=style.font_name,
            size=style.font_size,
            bold=bool(style.bold),
            italic=bool(style.italic),
            underline="single" if style.underline else None,
            color=style.font_color,
        )
    edges = (style.border_left, style.border_right, style.border_top, style.border_bottom)
    if any(edge is not None for edge in edges):
        attrs["border"] = Border(
            left=_side(style.border_left),
            right=_side(style.border_right),
            top=_side(style.border_top),
            bottom=_side(style.border_bottom),
        )
    if style.horizontal or style.vertical or style.wrap:
        attrs["alignment"] = Alignment(
            horizontal=style.horizontal,
            vertical=style.vertical,
            wrap_text=bool(style.wrap),
        )
    if style.number_format:
        attrs["number_format"] = style.number_format
    return attrs


def cell_value(cell: OdsCell) -> object:
    """Typed value for ``cell``; numbers come from ``office:value``, not the display text."""

    if cell.is_empty:
        return None
    if cell.value_type in NUMERIC_TYPES:
        number = cell.number
        if number is not None:
            return number
    if cell.value_type == "boolean":
        return cell.display == "TRUE"
    if cell.value_type == "date" and cell.date_value:
        try:
            return datetime.fromisoformat(cell.date_value)
        except ValueError:
            pass
    return cell.display


class _StyleCache:
    def __init__(self, styles: StyleMap) -> None:
        self._styles = styles
        self._cache: dict[str, dict[str, object]] = {}

    def get(self, name: str | None) -> dict[str, object]:
        if not name:
            return {}
        if name not in self._cache:
            style = self._styles.cells.get(name)
            self._cache[name] = style_attributes(style) if style is not None else {}
        return self._cache[name]


def _fill_sheet(ws: Worksheet, table: OdsTable, styles: StyleMap, cache: _StyleCache) -> None:
    for r, row in enumerate(table.rows, start=1):
        for c, cell in enumerate(row, start=1):
            if cell.covered:
                continue
            style_name = cell.style_name
            if style_name is None and c <= len(table.column_cell_styles):
                style_name = table.column_cell_styles[c - 1]
            value = cell_value(cell)
            attrs = cache.get(style_name)
            if value is None and not attrs:
                continue
            target = ws.cell(row=r, column=c)
            if value is not None:
                target.value = value
            for key, attr in attrs.items():
                setattr(target, key, attr)

    for c, name in enumerate(table.column_styles, start=1):
        width = styles.column_widths.get(name or "")
        if width is not None:
            ws.column_dimensions[get_column_letter(c)].width = width

    for r, name in enumerate(table.row_styles, start=1):
        height = styles.row_heights.get(name or "")
        if height is not None:
            ws.row_dimensions[r].height = height

    for merge in table.merges:
        if merge.rows == 1 and merge.cols == 1:
            continue
        ws.merge_cells(
            start_row=merge.row,
            start_column=merge.col,
            end_row=merge.end_row,
            end_column=merge.end_col,
        )


def load_ods_workbook(data: bytes, filename: str = "ODS") -> Workbook:
    content, styles_xml = read_ods_archive(data, filename)
    styles = build_style_map(content, styles_xml)
    cache = _StyleCache(styles)
    wb = Workbook()
    wb.remove(wb.active)
    used: set[str] = set()
    for table in read_tables(content):
        title = dedupe_sheet_name(truncate_sheet_name(sanitize_sheet_name(table.name)), used)
        ws = wb.create_sheet(title=title)
        _fill_sheet(ws, table, styles, cache)
    if not wb.worksheets:
        wb.create_sheet(title="Sheet")
    return wb
