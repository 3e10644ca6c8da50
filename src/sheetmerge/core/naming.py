import re
from pathlib import PurePath
from typing import Final

_MAX_SHEET: Final[int] = 31
_MAX_DEDUPE_ATTEMPTS: Final[int] = 1000
_ILLEGAL_PATTERN: Final[re.Pattern[str]] = re.compile(r"[\\/:?*\[\]]")
_CTRL_PATTERN: Final[re.Pattern[str]] = re.compile(r"[\x00-\x1F]")
_DATE_PATTERN: Final[re.Pattern[str]] = re.compile(r"(\d{1,2})[._\-/](\d{1,2})[._\-/](\d{2,4})")
_FALLBACK: Final[str] = "Sheet"
_ELLIPSIS: Final[str] = "…"

COMPOSITE_SEPARATOR: Final[str] = " – "
LABEL_SEPARATOR: Final[str] = " • "


def sanitize_sheet_name(name: str) -> str:
    n = str(name if name is not None else "").strip()
    if not n:
        return _FALLBACK
    # Replace control characters and Excel-illegal characters with safe underscores
    n = _CTRL_PATTERN.sub("_", n)
    n = _ILLEGAL_PATTERN.sub("_", n)
    n = re.sub(r"\s+", " ", n).strip()
    return n or _FALLBACK


def _cut(text: str, max_length: int) -> str:
    return (text[: max_length - 1] + _ELLIPSIS) or _FALLBACK


def truncate_sheet_name(name: str, max_length: int = _MAX_SHEET) -> str:
    """Shorten ``name`` to ``max_length`` characters.

    For ``"file – sheet"`` composites the file part stays intact and the
    sheet part is cut with an ellipsis.
    """

    s = name.strip()
    if len(s) <= max_length:
        return s or _FALLBACK

    file_part, sep, sheet_part = s.partition(COMPOSITE_SEPARATOR)
    if not sep:
        return _cut(s, max_length)
    if len(file_part) >= max_length:
        return _cut(file_part, max_length)
    room = max_length - len(file_part) - len(COMPOSITE_SEPARATOR) - 1
    if room <= 0:
        return _cut(file_part, max_length)
    if len(sheet_part) > room:
        sheet_part = sheet_part[:room] + _ELLIPSIS
    result = f"{file_part}{COMPOSITE_SEPARATOR}{sheet_part}"
    return result if len(result) <= max_length else _cut(result, max_length)


def dedupe_sheet_name(base: str, existing: set[str], max_length: int = _MAX_SHEET) -> str:
    """Return a name not in ``existing`` and record it there.

    Collisions get `` (2)``, `` (3)`` … appended; the base is shortened so the
    suffixed name still fits ``max_length``. Comparison ignores case, as
    spreadsheet applications do.
    """

    base = base.strip()[:max_length] or _FALLBACK
    taken = {name.casefold() for name in existing}
    if base.casefold() not in taken:
        existing.add(base)
        return base

    for i in range(2, _MAX_DEDUPE_ATTEMPTS):
        suffix = f" ({i})"
        candidate = base[: max_length - len(suffix)] + suffix
        if candidate.casefold() not in taken:
            existing.add(candidate)
            return candidate
    raise ValueError(f"Could not find a unique sheet name for '{base}'.")


def file_base_name(filename: str) -> str:
    stem = PurePath(str(filename)).stem.strip()
    return stem or _FALLBACK


def generate_sheet_name(file_base: str, sheet_name: str, sheets_in_file: int, existing: set[str]) -> str:
    """Excel-safe, unique output sheet name for one source sheet.

    A file contributing a single sheet is named after the file; otherwise
    the name is ``"file – sheet"``.
    """

    base = file_base.strip() or _FALLBACK
    sheet = (sheet_name or "").strip()
    raw = f"{base}{COMPOSITE_SEPARATOR}{sheet}" if sheets_in_file > 1 and sheet else base
    return dedupe_sheet_name(truncate_sheet_name(sanitize_sheet_name(raw)), existing)


def extract_date_label(filename: str) -> str:
    """``DD.MM.YYYY`` for the first date found in ``filename``, else its base name."""

    base = file_base_name(filename)
    m = _DATE_PATTERN.search(base)
    if not m:
        return base
    day, month, year = m.groups()
    if len(year) == 2:
        year = f"20{year}"
    return f"{day.zfill(2)}.{month.zfill(2)}.{year}"


def source_label(filename: str, sheet_name: str, sheets_in_file: int, *, date_label: bool = False) -> str:
    label = extract_date_label(filename) if date_label else file_base_name(filename)
    if sheets_in_file > 1:
        return f"{label}{LABEL_SEPARATOR}{sheet_name}"
    return label


_FILENAME_PATTERN: Final[re.Pattern[str]] = re.compile(r'[<>:"/\\|?*\x00-\x1F]')


def sanitize_filename(name: str) -> str:
    """Strip characters that are unsafe in a download file name."""

    cleaned = _FILENAME_PATTERN.sub("_", str(name or "")).strip(" .")
    return cleaned[:200]
