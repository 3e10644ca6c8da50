"""Cell, merge, dimension and view copying between openpyxl worksheets.

Every helper takes a row/column offset and the number of leading source rows
to skip, so a sheet can be copied into any block of a target sheet. Target
coordinates are always recomputed from the source coordinates.
"""

from __future__ import annotations

from copy import copy
from dataclasses import dataclass

from openpyxl.cell.cell import Cell, MergedCell
from openpyxl.comments import Comment
from openpyxl.formula.tokenizer import TokenizerError
from openpyxl.formula.translate import Translator, TranslatorError
from openpyxl.styles import Alignment, Border, Font, Protection
from openpyxl.styles.fills import Fill
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.utils.cell import coordinate_from_string
from openpyxl.worksheet.cell_range import CellRange
from openpyxl.worksheet.formula import ArrayFormula
from openpyxl.worksheet.worksheet import Worksheet


def is_formula(value: object) -> bool:
    return isinstance(value, str) and value.startswith("=") and len(value) > 1


def shift_value(value: object, origin: str, target: str, row_shift: int, col_shift: int) -> object:
    """Move a formula from ``origin`` to ``target``; other values pass through."""

    if not (row_shift or col_shift):
        return value
    if is_formula(value):
        try:
            return Translator(value, origin=origin).translate_formula(target)
        except (TranslatorError, TokenizerError):
            return value
    if isinstance(value, ArrayFormula):
        ref = CellRange(value.ref)
        ref.shift(col_shift=col_shift, row_shift=row_shift)
        text = value.text
        if is_formula(text):
            try:
                text = Translator(text, origin=origin).translate_formula(target)
            except (TranslatorError, TokenizerError):
                pass
        return ArrayFormula(ref=ref.coord, text=text)
    return value


def is_blank(ws: Worksheet) -> bool:
    if ws.max_row > 1 or ws.max_column > 1:
        return False
    first = ws.cell(row=1, column=1)
    return first.value is None and not first.has_style


def copy_style(src: Cell, dest: Cell) -> None:
    if not src.has_style:
        return
    dest.font = copy(src.font)
    dest.fill = copy(src.fill)
    dest.border = copy(src.border)
    dest.alignment = copy(src.alignment)
    dest.number_format = src.number_format
    dest.protection = copy(src.protection)


@dataclass(frozen=True)
class StyleSnapshot:
    """Workbook-independent copy of a cell's formatting."""

    font: Font
    fill: Fill
    border: Border
    alignment: Alignment
    number_format: str
    protection: Protection

    @classmethod
    def capture(cls, cell: Cell) -> "StyleSnapshot":
        return cls(
            font=copy(cell.font),
            fill=copy(cell.fill),
            border=copy(cell.border),
            alignment=copy(cell.alignment),
            number_format=cell.number_format,
            protection=copy(cell.protection),
        )

    def apply(self, cell: Cell) -> None:
        cell.font = copy(self.font)
        cell.fill = copy(self.fill)
        cell.border = copy(self.border)
        cell.alignment = copy(self.alignment)
        cell.number_format = self.number_format
        cell.protection = copy(self.protection)


def copy_cells(
    src: Worksheet,
    dest: Worksheet,
    *,
    row_offset: int = 0,
    col_offset: int = 0,
    skip_rows: int = 0,
) -> int:
    """Copy values and styles; returns the number of source rows placed."""

    row_shift = row_offset - skip_rows
    height = 0 if is_blank(src) else max(0, src.max_row - skip_rows)
    if height == 0:
        return 0
    for row in src.iter_rows(min_row=skip_rows + 1):
        for cell in row:
            if isinstance(cell, MergedCell):
                continue
            if cell.value is None and not cell.has_style:
                continue
            target = dest.cell(row=cell.row + row_shift, column=cell.column + col_offset)
            target.value = shift_value(cell.value, cell.coordinate, target.coordinate, row_shift, col_offset)
            copy_style(cell, target)
            if cell.comment is not None:
                target.comment = Comment(cell.comment.text, cell.comment.author)
    return height


def copy_merges(
    src: Worksheet,
    dest: Worksheet,
    *,
    row_offset: int = 0,
    col_offset: int = 0,
    skip_rows: int = 0,
) -> None:
    row_shift = row_offset - skip_rows
    for rng in list(src.merged_cells.ranges):
        if rng.min_row <= skip_rows:
            continue
        dest.merge_cells(
            start_row=rng.min_row + row_shift,
            start_column=rng.min_col + col_offset,
            end_row=rng.max_row + row_shift,
            end_column=rng.max_col + col_offset,
        )


def column_widths(src: Worksheet) -> dict[int, tuple[float | None, bool]]:
    """Explicit column widths and hidden flags keyed by 1-based column index."""

    found: dict[int, tuple[float | None, bool]] = {}
    limit = max(src.max_column, 1)
    for key, dim in src.column_dimensions.items():
        width = dim.width if dim.customWidth else None
        if width is None and not dim.hidden:
            continue
        first = dim.min or column_index_from_string(key)
        last = min(dim.max or first, limit)
        for idx in range(first, max(first, last) + 1):
            found[idx] = (width, bool(dim.hidden))
    return found


def apply_column_widths(dest: Worksheet, widths: dict[int, tuple[float | None, bool]], col_offset: int = 0) -> None:
    for idx, (width, hidden) in widths.items():
        dim = dest.column_dimensions[get_column_letter(idx + col_offset)]
        if width is not None:
            dim.width = width
        if hidden:
            dim.hidden = True


def copy_row_heights(
    src: Worksheet,
    dest: Worksheet,
    *,
    row_offset: int = 0,
    skip_rows: int = 0,
) -> None:
    row_shift = row_offset - skip_rows
    for idx, dim in list(src.row_dimensions.items()):
        if idx <= skip_rows or (dim.height is None and not dim.hidden):
            continue
        target = dest.row_dimensions[idx + row_shift]
        if dim.height is not None:
            target.height = dim.height
        if dim.hidden:
            target.hidden = True


def shift_coordinate(coordinate: str, row_offset: int, col_offset: int) -> str:
    letters, row = coordinate_from_string(coordinate)
    return f"{get_column_letter(column_index_from_string(letters) + col_offset)}{row + row_offset}"


def copy_view(src: Worksheet, dest: Worksheet, *, row_offset: int = 0, col_offset: int = 0) -> None:
    if src.freeze_panes:
        dest.freeze_panes = shift_coordinate(src.freeze_panes, row_offset, col_offset)
    dest.sheet_view.showGridLines = src.sheet_view.showGridLines
    if src.sheet_view.zoomScale:
        dest.sheet_view.zoomScale = src.sheet_view.zoomScale
    if src.sheet_properties.tabColor is not None:
        dest.sheet_properties.tabColor = copy(src.sheet_properties.tabColor)


def copy_worksheet(src: Worksheet, dest: Worksheet) -> None:
    """Full copy of ``src`` into the empty sheet ``dest``, formatting included."""

    dest.sheet_format = copy(src.sheet_format)
    copy_cells(src, dest)
    apply_column_widths(dest, column_widths(src))
    copy_row_heights(src, dest)
    copy_merges(src, dest)
    copy_view(src, dest)
