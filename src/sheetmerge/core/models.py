from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

MergeMode = Literal[
    "one_file_per_sheet",
    "consolidated_sheets",
    "all_to_one_sheet",
    "all_with_source_column",
    "row_per_file",
    "row_per_file_no_sum",
]
MERGE_MODES: tuple[str, ...] = (
    "one_file_per_sheet",
    "consolidated_sheets",
    "all_to_one_sheet",
    "all_with_source_column",
    "row_per_file",
    "row_per_file_no_sum",
)
SheetSelectionMode = Literal["all", "first"]
FilterMode = Literal["include", "exclude"]
FilterMatch = Literal["exact", "contains", "regex"]
OutputFormat = Literal["xlsx", "ods"]


@dataclass(frozen=True)
class FileRef:
    path: str
    filename: str

    @property
    def extension(self) -> str:
        return Path(self.filename).suffix.lower()

    def to_payload(self) -> dict[str, str]:
        return {"path": self.path, "filename": self.filename}


@dataclass(frozen=True)
class SheetSourceRef:
    file_path: str
    filename: str
    sheet_name: str
    sheet_index: int

    @property
    def file(self) -> FileRef:
        return FileRef(self.file_path, self.filename)


@dataclass(frozen=True)
class SheetNameFilter:
    mode: FilterMode = "include"
    values: tuple[str, ...] = ()
    match: FilterMatch = "exact"
    case_sensitive: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "values": list(self.values),
            "match": self.match,
            "caseSensitive": self.case_sensitive,
        }


@dataclass(frozen=True)
class MergeOptions:
    mode: MergeMode
    selected_sheets: Mapping[str, Sequence[int]] = field(default_factory=dict)
    sheet_selection_mode: SheetSelectionMode = "all"
    sheet_name_filter: SheetNameFilter | None = None
    output_format: OutputFormat = "xlsx"

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.mode,
            "sheetSelectionMode": self.sheet_selection_mode,
            "outputFormat": self.output_format,
        }
        if self.selected_sheets:
            payload["selectedSheets"] = {name: list(idx) for name, idx in self.selected_sheets.items()}
        if self.sheet_name_filter is not None:
            payload["sheetNameFilter"] = self.sheet_name_filter.to_payload()
        return payload


@dataclass(frozen=True)
class FileLimits:
    max_file_bytes: int
    max_files: int
    max_total_bytes: int


@dataclass(frozen=True)
class MergeResult:
    output_path: str
    warnings: list[str]
    sheets: list[str]
