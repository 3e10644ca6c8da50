from __future__ import annotations

import csv
import io
import math
from pathlib import Path

import openpyxl
import pandas as pd
from openpyxl import Workbook
from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.errors import SheetMergeError, UnreadableFile
from sheetmerge.core.models import FileRef, SheetSourceRef
from sheetmerge.ods.parser import ods_sheet_names, parse_ods_rich
from sheetmerge.ods.workbook import load_ods_workbook

CSV_SHEET_NAME = "Daten"
DELIMITER_CANDIDATES = ("\t", ";", "|", ",")
_XLSX_EXTENSIONS = {".xlsx", ".xlsm"}
_DELIMITED_EXTENSIONS = {".csv", ".tsv"}


def detect_delimiter(text: str) -> str:
    """Pick the candidate present on every one of the first lines, preferring a constant count."""

    lines = text[:4096].splitlines()[:10]
    filled = [line for line in lines if line.strip()]
    best, best_score = ",", 0
    for delimiter in DELIMITER_CANDIDATES:
        counts = [line.count(delimiter) for line in filled]
        if not counts or min(counts) == 0:
            continue
        consistent = all(count == counts[0] for count in counts)
        score = counts[0] * len(filled) * (2 if consistent else 1)
        if score > best_score:
            best, best_score = delimiter, score
    return best


def coerce_number(value: object) -> object:
    if not isinstance(value, str):
        return None if value is None or pd.isna(value) else value
    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return value
    if not math.isfinite(number):
        return value
    if number.is_integer() and text.lstrip("+-").isdigit():
        return int(text)
    return number


def read_delimited(path: str, delimiter: str | None = None) -> list[list[object]]:
    """Rows of a CSV/TSV file with numeric-looking cells converted to numbers."""

    raw = Path(path).read_bytes()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("cp1252", errors="replace")
    sep = delimiter or detect_delimiter(text)
    width = max((len(row) for row in csv.reader(io.StringIO(text), delimiter=sep)), default=0)
    if width == 0:
        return []
    frame = pd.read_csv(
        io.StringIO(text),
        sep=sep,
        header=None,
        names=list(range(width)),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        engine="python",
        quotechar='"',
    )
    rows: list[list[object]] = []
    for record in frame.itertuples(index=False, name=None):
        values = [coerce_number(cell) for cell in record]
        while values and values[-1] is None:
            values.pop()
        if values:
            rows.append(values)
    return rows


def _delimited_workbook(path: str) -> Workbook:
    wb = Workbook()
    ws = wb.active
    ws.title = CSV_SHEET_NAME
    for row in read_delimited(path):
        ws.append(row)
    return wb


class WorkbookLoader:
    """Loads input files as openpyxl workbooks, whatever their format.

    The most recently loaded workbook is kept so consecutive sheets of one
    file do not re-parse it; loading another file replaces it.
    """

    def __init__(self) -> None:
        self._cached: tuple[tuple[str, bool], Workbook] | None = None

    def release(self) -> None:
        self._cached = None

    def _kind(self, file: FileRef) -> str:
        ext = file.extension
        if ext in _XLSX_EXTENSIONS:
            return "xlsx"
        if ext == ".ods":
            return "ods"
        if ext in _DELIMITED_EXTENSIONS:
            return "csv"
        if ext == ".xls":
            raise UnreadableFile(file.filename, "the legacy .xls format is not supported, save it as .xlsx")
        raise UnreadableFile(file.filename, f"unsupported file type '{ext or '?'}'")

    def sheet_names(self, file: FileRef) -> list[str]:
        kind = self._kind(file)
        try:
            if kind == "xlsx":
                wb = openpyxl.load_workbook(file.path, read_only=True)
                try:
                    # chartsheets hold no cells and are not part of wb.worksheets
                    return [ws.title for ws in wb.worksheets]
                finally:
                    wb.close()
            if kind == "ods":
                return ods_sheet_names(Path(file.path).read_bytes(), file.filename)
            return [CSV_SHEET_NAME]
        except SheetMergeError:
            raise
        except Exception as exc:
            raise UnreadableFile(file.filename, str(exc) or type(exc).__name__) from exc

    def load_workbook(self, file: FileRef, *, data_only: bool = False) -> Workbook:
        kind = self._kind(file)
        # ODS and CSV carry no formulas, so both views are the same workbook
        key = (file.path, data_only if kind == "xlsx" else False)
        if self._cached is not None and self._cached[0] == key:
            return self._cached[1]
        self._cached = None
        try:
            if kind == "xlsx":
                wb = openpyxl.load_workbook(file.path, data_only=data_only)
            elif kind == "ods":
                wb = load_ods_workbook(Path(file.path).read_bytes(), file.filename)
            else:
                wb = _delimited_workbook(file.path)
        except SheetMergeError:
            raise
        except Exception as exc:
            raise UnreadableFile(file.filename, str(exc) or type(exc).__name__) from exc
        self._cached = (key, wb)
        return wb

    def load_sheet(self, source: SheetSourceRef, *, data_only: bool = False) -> Worksheet:
        wb = self.load_workbook(source.file, data_only=data_only)
        if not 0 <= source.sheet_index < len(wb.worksheets):
            raise UnreadableFile(source.filename, f"sheet '{source.sheet_name}' not found")
        return wb.worksheets[source.sheet_index]

    def read_rows(self, file: FileRef) -> list[tuple[str, list[list[object]]]]:
        kind = self._kind(file)
        try:
            if kind == "xlsx":
                wb = openpyxl.load_workbook(file.path, read_only=True, data_only=True)
                try:
                    return [(ws.title, [list(row) for row in ws.iter_rows(values_only=True)]) for ws in wb.worksheets]
                finally:
                    wb.close()
            if kind == "ods":
                return [
                    (sheet.name, [[cell.number if cell.number is not None else cell.text for cell in row] for row in sheet.rows])
                    for sheet in parse_ods_rich(Path(file.path).read_bytes(), file.filename)
                ]
            return [(CSV_SHEET_NAME, read_delimited(file.path))]
        except SheetMergeError:
            raise
        except Exception as exc:
            raise UnreadableFile(file.filename, str(exc) or type(exc).__name__) from exc
