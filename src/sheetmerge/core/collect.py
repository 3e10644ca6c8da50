from __future__ import annotations

from collections.abc import Sequence

from sheetmerge.core.errors import NoSheetsMatched, UnreadableFile
from sheetmerge.core.models import FileRef, MergeOptions, SheetSourceRef
from sheetmerge.core.progress import ProgressHook, emit_progress
from sheetmerge.core.sheet_filter import keep_sheet
from sheetmerge.ports.readers import SheetLoader

NO_SHEETS_MESSAGE = "No sheets matched the current sheet selection or filter."


def selected_indices(file: FileRef, names: Sequence[str], options: MergeOptions) -> list[int]:
    """Sheet indices chosen for ``file`` before the name filter runs."""

    explicit = options.selected_sheets.get(file.filename)
    if explicit:
        seen: set[int] = set()
        chosen: list[int] = []
        for idx in explicit:
            if 0 <= idx < len(names) and idx not in seen:
                seen.add(idx)
                chosen.append(idx)
        return chosen
    if not names:
        return []
    if options.sheet_selection_mode == "first":
        return [0]
    return list(range(len(names)))


def collect_sheet_sources(
    files: Sequence[FileRef],
    options: MergeOptions,
    loader: SheetLoader,
    warnings: list[str],
    hooks: Sequence[ProgressHook] = (),
) -> list[SheetSourceRef]:
    """Resolve the ordered ``(file, sheet)`` list a merge works on.

    Files that cannot be opened are skipped and add one warning each,
    formatted ``"<filename>: <reason>"``. Sheets that fail later in a
    strategy are reported as ``"<filename> (<sheet>): <reason>"``.
    Raises :class:`NoSheetsMatched` when nothing survives.
    """

    sources: list[SheetSourceRef] = []
    total = len(files)
    for position, file in enumerate(files):
        emit_progress(hooks, 100 * position / max(total, 1), f"Reading {file.filename}")
        try:
            names = loader.sheet_names(file)
        except UnreadableFile as exc:
            warnings.append(f"{file.filename}: {exc.reason}")
            continue
        for idx in selected_indices(file, names, options):
            name = names[idx]
            if keep_sheet(name, options.sheet_name_filter):
                sources.append(SheetSourceRef(file.path, file.filename, name, idx))
    emit_progress(hooks, 100, f"{len(sources)} sheet(s) selected")
    if not sources:
        raise NoSheetsMatched(NO_SHEETS_MESSAGE)
    return sources


def sheets_per_file(sources: Sequence[SheetSourceRef]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for source in sources:
        counts[source.file_path] = counts.get(source.file_path, 0) + 1
    return counts
