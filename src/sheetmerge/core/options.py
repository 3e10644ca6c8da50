"""Validation of merge options and input files at the request boundary."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from typing import Any

from sheetmerge.core.errors import ValidationError
from sheetmerge.core.models import (
    MERGE_MODES,
    FileLimits,
    FileRef,
    MergeOptions,
    SheetNameFilter,
)

SUPPORTED_EXTENSIONS: tuple[str, ...] = (".xlsx", ".xlsm", ".ods", ".csv", ".tsv")
_SELECTION_MODES = {"all", "first"}
_FILTER_MODES = {"include", "exclude"}
_FILTER_MATCHES = {"exact", "contains", "regex"}
_OUTPUT_FORMATS = {"xlsx", "ods"}


def _require_mapping(value: Any, context: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError(f"{context} must be an object.")
    return value


def _parse_choice(value: Any, choices: set[str], context: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str) or value not in choices:
        allowed = ", ".join(sorted(choices))
        raise ValidationError(f"{context} must be one of: {allowed}.")
    return value


def _parse_sheet_index(value: Any, context: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{context} must contain sheet indices.")
    if isinstance(value, int):
        index = value
    elif isinstance(value, str) and value.strip().isdigit():
        index = int(value.strip())
    else:
        raise ValidationError(f"{context} must contain sheet indices.")
    if index < 0:
        raise ValidationError(f"{context} cannot contain negative sheet indices.")
    return index


def _parse_selected_sheets(raw: Any) -> dict[str, tuple[int, ...]]:
    if raw is None:
        return {}
    mapping = _require_mapping(raw, "selectedSheets")
    selected: dict[str, tuple[int, ...]] = {}
    for filename, indices in mapping.items():
        context = f"selectedSheets['{filename}']"
        if isinstance(indices, (str, bytes)) or not isinstance(indices, Sequence):
            raise ValidationError(f"{context} must be a list of sheet indices.")
        selected[str(filename)] = tuple(_parse_sheet_index(item, context) for item in indices)
    return selected


def _parse_filter(raw: Any) -> SheetNameFilter | None:
    if raw is None:
        return None
    mapping = _require_mapping(raw, "sheetNameFilter")
    values_raw = mapping.get("values", [])
    if isinstance(values_raw, str) or not isinstance(values_raw, Sequence):
        raise ValidationError("sheetNameFilter.values must be a list of strings.")
    values: list[str] = []
    for item in values_raw:
        if not isinstance(item, str):
            raise ValidationError("sheetNameFilter.values must be a list of strings.")
        if item.strip():
            values.append(item)
    case_sensitive = mapping.get("caseSensitive", False)
    if not isinstance(case_sensitive, bool):
        raise ValidationError("sheetNameFilter.caseSensitive must be a boolean.")
    return SheetNameFilter(
        mode=_parse_choice(mapping.get("mode"), _FILTER_MODES, "sheetNameFilter.mode", "include"),  # type: ignore[arg-type]
        values=tuple(values),
        match=_parse_choice(mapping.get("match"), _FILTER_MATCHES, "sheetNameFilter.match", "exact"),  # type: ignore[arg-type]
        case_sensitive=case_sensitive,
    )


def parse_merge_options(raw: Mapping[str, Any]) -> MergeOptions:
    """Build :class:`MergeOptions` from a JSON-style mapping.

    Keys follow the wire format exchanged with callers and workers
    (``mode``, ``sheetSelectionMode``, ``selectedSheets``,
    ``sheetNameFilter``, ``outputFormat``). Any invalid entry raises
    :class:`ValidationError` before work starts.
    """

    data = _require_mapping(raw, "options")
    mode = data.get("mode")
    if mode not in MERGE_MODES:
        raise ValidationError(f"Unknown merge mode '{mode}'. Expected one of: {', '.join(MERGE_MODES)}.")
    return MergeOptions(
        mode=mode,
        selected_sheets=_parse_selected_sheets(data.get("selectedSheets")),
        sheet_selection_mode=_parse_choice(  # type: ignore[arg-type]
            data.get("sheetSelectionMode"), _SELECTION_MODES, "sheetSelectionMode", "all"
        ),
        sheet_name_filter=_parse_filter(data.get("sheetNameFilter")),
        output_format=_parse_choice(  # type: ignore[arg-type]
            data.get("outputFormat"), _OUTPUT_FORMATS, "outputFormat", "xlsx"
        ),
    )


def limits_from_settings(cfg: Any) -> FileLimits:
    mb = 1024 * 1024
    return FileLimits(
        max_file_bytes=int(cfg.max_file_size_mb * mb),
        max_files=int(cfg.max_files),
        max_total_bytes=int(cfg.max_total_size_mb * mb),
    )


def _format_mb(size: int) -> str:
    return f"{round(size / (1024 * 1024))} MB"


def validate_files(files: Sequence[FileRef], limits: FileLimits | None = None) -> None:
    if not files:
        raise ValidationError("No input files were provided.")
    if limits is not None and len(files) > limits.max_files:
        raise ValidationError(f"Too many files. At most {limits.max_files} files per merge are allowed.")

    total = 0
    for ref in files:
        ext = ref.extension
        if ext == ".xls":
            raise ValidationError(
                f"{ref.filename}: the legacy .xls format is not supported. Please save the file as .xlsx."
            )
        if ext not in SUPPORTED_EXTENSIONS:
            allowed = ", ".join(SUPPORTED_EXTENSIONS)
            raise ValidationError(f"{ref.filename}: unsupported file format. Allowed: {allowed}.")
        try:
            size = os.path.getsize(ref.path)
        except OSError as exc:
            raise ValidationError(f"{ref.filename}: file is not accessible ({exc}).") from exc
        if size <= 0:
            raise ValidationError(f"{ref.filename}: file is empty.")
        if limits is not None and size > limits.max_file_bytes:
            raise ValidationError(
                f"{ref.filename} is too large. At most {_format_mb(limits.max_file_bytes)} per file are allowed."
            )
        total += size

    if limits is not None and total > limits.max_total_bytes:
        raise ValidationError(
            f"Total size exceeded. At most {_format_mb(limits.max_total_bytes)} for all files together are allowed."
        )


def parse_file_refs(raw: Any) -> list[FileRef]:
    if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
        raise ValidationError("files must be a list.")
    refs: list[FileRef] = []
    for item in raw:
        entry = _require_mapping(item, "files[]")
        path = entry.get("path")
        if not isinstance(path, str) or not path:
            raise ValidationError("files[].path must be a non-empty string.")
        filename = entry.get("filename") or os.path.basename(path)
        refs.append(FileRef(path=path, filename=str(filename)))
    return refs
