from collections.abc import Mapping
from typing import Protocol

from openpyxl import Workbook


class WorkbookSink(Protocol):
    def save(
        self,
        workbook: Workbook,
        out_path: str,
        formula_results: Mapping[str, Mapping[str, object]] | None = None,
    ) -> None: ...


class OdsExporter(Protocol):
    def export(self, xlsx_path: str, ods_path: str) -> None: ...
