from typing import Protocol

from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.models import FileRef, SheetSourceRef


class SheetLoader(Protocol):
    def sheet_names(self, file: FileRef) -> list[str]: ...
    def load_sheet(self, source: SheetSourceRef, *, data_only: bool = False) -> Worksheet: ...
    def read_rows(self, file: FileRef) -> list[tuple[str, list[list[object]]]]: ...
    def release(self) -> None: ...
