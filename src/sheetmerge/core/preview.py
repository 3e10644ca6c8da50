from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import pandas as pd
from openpyxl.utils import get_column_letter

from sheetmerge.core.collect import selected_indices
from sheetmerge.core.consolidated import numeric_value
from sheetmerge.core.errors import UnreadableFile
from sheetmerge.core.matrix import HEADER_LABEL, TOTAL_LABEL
from sheetmerge.core.models import FileRef, MergeOptions
from sheetmerge.core.naming import file_base_name, source_label
from sheetmerge.core.sheet_filter import keep_sheet
from sheetmerge.ports.readers import SheetLoader

PREVIEW_MAX_ROWS = 5
SOURCE_COLUMN = "source_file"
SUMMARY_HEADER = "(Zusammenfassung)"
SUM_LABEL = "Σ Summe"
SHEET_COLUMN = "(Sheet)"


@dataclass
class _PreviewSource:
    filename: str
    sheet_name: str
    rows: list[list[object]]
    data_rows: int

    @property
    def frame(self) -> pd.DataFrame:
        if not self.rows:
            return pd.DataFrame()
        header = _unique_headers(self.rows[0])
        body = [list(row) + [None] * (len(header) - len(row)) for row in self.rows[1:]]
        return pd.DataFrame([row[: len(header)] for row in body], columns=header, dtype=object)


def _text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if pd.isna(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def _unique_headers(row: Sequence[object]) -> list[str]:
    seen: dict[str, int] = {}
    headers: list[str] = []
    for i, value in enumerate(row):
        name = _text(value).strip() or f"Column {i + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name} ({seen[name]})"
        else:
            seen[name] = 1
        headers.append(name)
    return headers


def _trim(rows: list[list[object]]) -> list[list[object]]:
    cleaned: list[list[object]] = []
    for row in rows:
        values = list(row)
        while values and _text(values[-1]).strip() == "":
            values.pop()
        cleaned.append(values)
    while cleaned and not cleaned[-1]:
        cleaned.pop()
    return cleaned


def _load_sources(
    files: Sequence[FileRef], options: MergeOptions, loader: SheetLoader, max_rows: int
) -> list[_PreviewSource]:
    sources: list[_PreviewSource] = []
    for file in files:
        try:
            sheets = loader.read_rows(file)
        except UnreadableFile:
            continue
        names = [name for name, _ in sheets]
        for idx in selected_indices(file, names, options):
            name, rows = sheets[idx]
            if not keep_sheet(name, options.sheet_name_filter):
                continue
            rows = _trim(rows)
            sources.append(
                _PreviewSource(file.filename, name, rows[: max_rows + 1], max(0, len(rows) - 1))
            )
    return sources


def _rows_of(frame: pd.DataFrame) -> list[list[str]]:
    return [[_text(v) for v in record] for record in frame.astype(object).itertuples(index=False, name=None)]


def _stacked(sources: list[_PreviewSource], with_source: bool) -> tuple[list[str], list[list[str]]]:
    frames = []
    for source in sources:
        frame = source.frame
        if with_source:
            frame.insert(0, SOURCE_COLUMN, source.filename)
        frames.append(frame)
    if not frames:
        return [], []
    merged = pd.concat(frames, ignore_index=True, sort=False)
    merged = merged.astype(object).where(merged.notna(), None)
    return [str(c) for c in merged.columns], _rows_of(merged)


def _consolidated(sources: list[_PreviewSource]) -> tuple[list[str], list[list[str]]]:
    frames = [source.frame for source in sources]
    if not frames:
        return [], []
    merged = pd.concat(frames, ignore_index=True, sort=False)
    totals = merged.apply(lambda column: pd.to_numeric(column, errors="coerce")).sum(min_count=1)
    headers = [str(c) for c in merged.columns]
    return [SUMMARY_HEADER, *headers], [[SUM_LABEL, *(_text(totals[c]) for c in merged.columns)]]


def _matrix(sources: list[_PreviewSource], with_sum: bool) -> tuple[list[str], list[list[str]]]:
    keys = sorted(
        {
            (r, c)
            for source in sources
            for r, row in enumerate(source.rows, start=1)
            for c, value in enumerate(row, start=1)
            if _text(value).strip()
        }
    )
    headers = [HEADER_LABEL, *(f"{get_column_letter(c)}{r}" for r, c in keys)]
    counts: dict[str, int] = {}
    for source in sources:
        counts[source.filename] = counts.get(source.filename, 0) + 1
    rows: list[list[str]] = []
    totals: list[int | float | None] = [None] * len(keys)
    for source in sources:
        out = [source_label(source.filename, source.sheet_name, counts[source.filename], date_label=True)]
        for slot, (r, c) in enumerate(keys):
            row = source.rows[r - 1] if r <= len(source.rows) else []
            value = row[c - 1] if c <= len(row) else None
            number = numeric_value(value)
            if number is not None:
                totals[slot] = (totals[slot] or 0) + number
            out.append(_text(value))
        rows.append(out)
    if with_sum:
        rows.append([TOTAL_LABEL, *(_text(t) for t in totals)])
    return headers, rows


def merge_preview(
    files: Sequence[FileRef],
    mode: str,
    loader: SheetLoader,
    max_rows: int = PREVIEW_MAX_ROWS,
    options: MergeOptions | None = None,
) -> dict:
    """Approximate the merge result from the first ``max_rows`` rows of every source.

    ``options`` narrows the sheets the same way a merge would; without it
    every sheet of every file takes part.
    """

    if options is None:
        options = MergeOptions(mode=mode)
    sources = _load_sources(files, options, loader, max_rows)
    if mode == "one_file_per_sheet":
        first = sources[:1]
        headers, rows = _stacked(first, with_source=False)
        if first:
            headers = [*headers, SHEET_COLUMN]
            rows = [[*row, file_base_name(first[0].filename)] for row in rows]
        total_rows = sum(s.data_rows for s in first)
    elif mode == "consolidated_sheets":
        headers, rows = _consolidated(sources)
        total_rows = sum(s.data_rows for s in sources)
    elif mode in ("row_per_file", "row_per_file_no_sum"):
        headers, rows = _matrix(sources, with_sum=mode == "row_per_file")
        total_rows = len(sources)
    else:
        headers, rows = _stacked(sources, with_source=mode == "all_with_source_column")
        total_rows = sum(s.data_rows for s in sources)
    return {
        "mode": mode,
        "headers": headers,
        "rows": rows,
        "totalSourceRows": total_rows,
    }
