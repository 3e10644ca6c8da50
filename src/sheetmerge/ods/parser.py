"""OpenDocument spreadsheet reader built on the flat tokenizer.

``read_tables`` walks ``content.xml`` once and rebuilds the table grid:
repeated rows and columns are expanded, covered cells keep their grid
position, spans become merge ranges, and empty runs are only materialized
when something non-empty follows them so trailing padding never grows.
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field

from sheetmerge.core.errors import UnreadableFile
from sheetmerge.ods.tokenizer import Token, TokenKind, tokenize

MAX_ROWS = 1_048_576
MAX_COLUMNS = 16_384
MAX_STYLED_COLUMNS = 1_024
NUMERIC_TYPES = frozenset({"float", "currency", "percentage"})


@dataclass(frozen=True)
class MergeRange:
    row: int
    col: int
    rows: int = 1
    cols: int = 1

    @property
    def end_row(self) -> int:
        return self.row + self.rows - 1

    @property
    def end_col(self) -> int:
        return self.col + self.cols - 1


@dataclass
class OdsCell:
    text: str = ""
    value_type: str | None = None
    value: str | None = None
    date_value: str | None = None
    time_value: str | None = None
    boolean_value: str | None = None
    string_value: str | None = None
    style_name: str | None = None
    covered: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.text and not any(
            (self.value, self.date_value, self.time_value, self.boolean_value, self.string_value)
        )

    @property
    def display(self) -> str:
        if self.value_type == "boolean":
            raw = (self.boolean_value or self.value or self.text or "").strip().lower()
            return "TRUE" if raw in {"true", "1"} else "FALSE"
        if self.text:
            return self.text
        for candidate in (self.value, self.date_value, self.time_value, self.string_value):
            if candidate:
                return candidate
        return ""

    @property
    def number(self) -> float | None:
        if self.value_type not in NUMERIC_TYPES or self.value is None:
            return None
        try:
            return float(self.value)
        except ValueError:
            return None


@dataclass
class OdsTable:
    name: str
    rows: list[list[OdsCell]] = field(default_factory=list)
    row_styles: list[str | None] = field(default_factory=list)
    column_styles: list[str | None] = field(default_factory=list)
    column_cell_styles: list[str | None] = field(default_factory=list)
    merges: list[MergeRange] = field(default_factory=list)


@dataclass(frozen=True)
class OdsSheet:
    name: str
    rows: list[list[str]]
    merges: list[MergeRange]


@dataclass(frozen=True)
class OdsRichCell:
    text: str
    number: float | None = None


@dataclass(frozen=True)
class OdsRichSheet:
    name: str
    rows: list[list[OdsRichCell]]
    merges: list[MergeRange]


def read_ods_archive(data: bytes, filename: str = "ODS") -> tuple[str, str | None]:
    """Return ``(content_xml, styles_xml)`` from an ODS container."""

    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise UnreadableFile(filename, "invalid ODS: not a zip container") from exc
    with archive:
        names = set(archive.namelist())
        if "content.xml" not in names:
            raise UnreadableFile(filename, "invalid ODS: content.xml missing")
        content = archive.read("content.xml").decode("utf-8", errors="replace")
        styles = None
        if "styles.xml" in names:
            styles = archive.read("styles.xml").decode("utf-8", errors="replace")
    return content, styles


class _TableBuilder:
    def __init__(self, name: str) -> None:
        self.table = OdsTable(name=name)
        self._pending_rows: list[tuple[str | None, int]] = []
        self._cells: list[OdsCell] = []
        self._pending_cells: list[tuple[OdsCell, int]] = []
        self._row_style: str | None = None
        self._row_repeat = 1

    @property
    def _row_index(self) -> int:
        return len(self.table.rows) + sum(count for _, count in self._pending_rows)

    @property
    def _col_index(self) -> int:
        return len(self._cells) + sum(count for _, count in self._pending_cells)

    def add_column(self, token: Token) -> None:
        repeat = token.get_int("number-columns-repeated")
        room = MAX_STYLED_COLUMNS - len(self.table.column_styles)
        for _ in range(min(repeat, max(room, 0))):
            self.table.column_styles.append(token.get("style-name"))
            self.table.column_cell_styles.append(token.get("default-cell-style-name"))

    def start_row(self, token: Token) -> None:
        self._cells = []
        self._pending_cells = []
        self._row_style = token.get("style-name")
        self._row_repeat = token.get_int("number-rows-repeated")

    def add_cell(self, cell: OdsCell, repeat: int, rows_spanned: int, cols_spanned: int) -> None:
        if rows_spanned > 1 or cols_spanned > 1:
            self.table.merges.append(
                MergeRange(self._row_index + 1, self._col_index + 1, rows_spanned, cols_spanned)
            )
        if cell.is_empty:
            self._pending_cells.append((cell, repeat))
            return
        for pending, count in self._pending_cells:
            self._extend_cells(pending, count)
        self._pending_cells = []
        self._extend_cells(cell, repeat)

    def _extend_cells(self, cell: OdsCell, count: int) -> None:
        room = MAX_COLUMNS - len(self._cells)
        self._cells.extend([cell] * max(0, min(count, room)))

    def end_row(self) -> None:
        if not self._cells:
            self._pending_rows.append((self._row_style, self._row_repeat))
            return
        for style, count in self._pending_rows:
            self._append_rows([], style, count)
        self._pending_rows = []
        self._append_rows(self._cells, self._row_style, self._row_repeat)

    def _append_rows(self, cells: list[OdsCell], style: str | None, count: int) -> None:
        room = MAX_ROWS - len(self.table.rows)
        for _ in range(max(0, min(count, room))):
            self.table.rows.append(list(cells))
            self.table.row_styles.append(style)

    def finish(self) -> OdsTable:
        height = len(self.table.rows)
        self.table.merges = [m for m in self.table.merges if m.row <= height]
        return self.table


def _cell_from(token: Token) -> OdsCell:
    return OdsCell(
        value_type=token.get("value-type"),
        value=token.get("value"),
        date_value=token.get("date-value"),
        time_value=token.get("time-value"),
        boolean_value=token.get("boolean-value"),
        string_value=token.get("string-value"),
        style_name=token.get("style-name"),
        covered=token.local == "covered-table-cell",
    )


def read_tables(content_xml: str) -> list[OdsTable]:
    tables: list[OdsTable] = []
    builder: _TableBuilder | None = None
    table_depth = 0

    cell: OdsCell | None = None
    cell_token: Token | None = None
    paragraphs: list[str] = []
    parts: list[str] = []
    in_paragraph = 0
    annotation_depth = 0

    def close_cell() -> None:
        nonlocal cell, cell_token
        if builder is None or cell is None or cell_token is None:
            cell = cell_token = None
            return
        cell.text = "\n".join(paragraphs) if any(paragraphs) else ""
        builder.add_cell(
            cell,
            cell_token.get_int("number-columns-repeated"),
            cell_token.get_int("number-rows-spanned"),
            cell_token.get_int("number-columns-spanned"),
        )
        cell = cell_token = None

    for token in tokenize(content_xml):
        kind = token.kind
        local = token.local

        if kind is TokenKind.TEXT:
            if cell is not None and in_paragraph and not annotation_depth:
                parts.append(token.text)
            continue

        if local == "table":
            if kind is TokenKind.OPEN:
                table_depth += 1
                if table_depth == 1:
                    builder = _TableBuilder(token.get("name") or f"Sheet{len(tables) + 1}")
            elif kind is TokenKind.CLOSE:
                if table_depth == 1 and builder is not None:
                    tables.append(builder.finish())
                    builder = None
                table_depth = max(0, table_depth - 1)
            continue

        if builder is None or table_depth != 1:
            continue

        if local == "table-column" and token.opens:
            builder.add_column(token)
        elif local == "table-row":
            if kind is TokenKind.OPEN:
                builder.start_row(token)
            elif kind is TokenKind.SELF_CLOSE:
                builder.start_row(token)
                builder.end_row()
            else:
                builder.end_row()
        elif local in ("table-cell", "covered-table-cell"):
            if kind is TokenKind.CLOSE:
                close_cell()
            else:
                cell = _cell_from(token)
                cell_token = token
                paragraphs = []
                if kind is TokenKind.SELF_CLOSE:
                    close_cell()
        elif cell is None:
            continue
        elif local == "annotation":
            if kind is TokenKind.OPEN:
                annotation_depth += 1
            elif kind is TokenKind.CLOSE:
                annotation_depth = max(0, annotation_depth - 1)
        elif annotation_depth:
            continue
        elif local in ("p", "h"):
            if kind is TokenKind.OPEN:
                in_paragraph += 1
                parts = []
            elif kind is TokenKind.CLOSE:
                in_paragraph = max(0, in_paragraph - 1)
                paragraphs.append("".join(parts))
            else:
                paragraphs.append("")
        elif in_paragraph and token.opens:
            if local == "s":
                parts.append(" " * token.get_int("c"))
            elif local == "tab":
                parts.append("\t")
            elif local == "line-break":
                parts.append("\n")

    return tables


def _trimmed(values: list, empty) -> list:
    end = len(values)
    while end and empty(values[end - 1]):
        end -= 1
    return values[:end]


def parse_ods(data: bytes, filename: str = "ODS") -> list[OdsSheet]:
    """Parse an ODS file into display-string grids, one per table."""

    content, _ = read_ods_archive(data, filename)
    sheets: list[OdsSheet] = []
    for table in read_tables(content):
        rows = [_trimmed([c.display for c in row], lambda v: v == "") for row in table.rows]
        rows = _trimmed(rows, lambda r: not r)
        sheets.append(OdsSheet(table.name, rows, list(table.merges)))
    return sheets


def parse_ods_rich(data: bytes, filename: str = "ODS") -> list[OdsRichSheet]:
    """Like :func:`parse_ods`, keeping the machine-readable number of numeric cells."""

    content, _ = read_ods_archive(data, filename)
    sheets: list[OdsRichSheet] = []
    for table in read_tables(content):
        rows = [
            _trimmed(
                [OdsRichCell(c.display, c.number) for c in row],
                lambda v: v.text == "" and v.number is None,
            )
            for row in table.rows
        ]
        rows = _trimmed(rows, lambda r: not r)
        sheets.append(OdsRichSheet(table.name, rows, list(table.merges)))
    return sheets


def ods_sheet_names(data: bytes, filename: str = "ODS") -> list[str]:
    content, _ = read_ods_archive(data, filename)
    names: list[str] = []
    depth = 0
    for token in tokenize(content):
        if token.local != "table":
            continue
        if token.kind is TokenKind.OPEN:
            depth += 1
            if depth == 1:
                names.append(token.get("name") or f"Sheet{len(names) + 1}")
        elif token.kind is TokenKind.CLOSE:
            depth = max(0, depth - 1)
    return names
