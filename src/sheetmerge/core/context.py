from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from openpyxl.worksheet.worksheet import Worksheet

from sheetmerge.core.errors import UnreadableFile
from sheetmerge.core.models import SheetSourceRef
from sheetmerge.core.progress import ProgressHook, emit_progress, step_pct
from sheetmerge.ports.readers import SheetLoader


def sheet_warning(source: SheetSourceRef, reason: object) -> str:
    if isinstance(reason, UnreadableFile):
        reason = reason.reason
    text = str(reason).strip() or type(reason).__name__
    return f"{source.filename} ({source.sheet_name}): {text}"


@dataclass
class MergeContext:
    """Shared state of one strategy run: loader, warnings and progress."""

    loader: SheetLoader
    warnings: list[str] = field(default_factory=list)
    hooks: Sequence[ProgressHook] = ()
    copied: int = 0
    formula_results: dict[str, dict[str, int | float]] = field(default_factory=dict)
    _failed: set[SheetSourceRef] = field(default_factory=set)

    def warn(self, source: SheetSourceRef, reason: object) -> None:
        if source in self._failed:
            return
        self._failed.add(source)
        self.warnings.append(sheet_warning(source, reason))

    def load(self, source: SheetSourceRef, *, data_only: bool = False) -> Worksheet | None:
        """The worksheet for ``source``, or ``None`` after recording a warning."""

        if source in self._failed:
            return None
        try:
            return self.loader.load_sheet(source, data_only=data_only)
        except UnreadableFile as exc:
            self.warn(source, exc)
            return None

    def progress(self, index: int, total: int, msg: str, start: float = 0.0, end: float = 100.0) -> None:
        emit_progress(self.hooks, step_pct(index, total, start, end), msg)

    def mark_copied(self) -> None:
        self.copied += 1
