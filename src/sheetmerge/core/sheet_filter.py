from __future__ import annotations

import re
from collections.abc import Iterable

from sheetmerge.core.models import SheetNameFilter


def _value_matches(name: str, value: str, flt: SheetNameFilter) -> bool:
    if flt.match == "regex":
        flags = 0 if flt.case_sensitive else re.IGNORECASE
        try:
            return re.search(value, name, flags) is not None
        except re.error:
            return False
    if not flt.case_sensitive:
        name, value = name.casefold(), value.casefold()
    if flt.match == "contains":
        return value in name
    return name == value


def matches_sheet_name(name: str, flt: SheetNameFilter) -> bool:
    """True when ``name`` matches any of the filter values."""

    return any(_value_matches(name, value, flt) for value in flt.values if value.strip())


def is_active(flt: SheetNameFilter | None) -> bool:
    return flt is not None and any(value.strip() for value in flt.values)


def keep_sheet(name: str, flt: SheetNameFilter | None) -> bool:
    if flt is None or not is_active(flt):
        return True
    hit = matches_sheet_name(name, flt)
    return hit if flt.mode == "include" else not hit


def apply_sheet_filter(names: Iterable[str], flt: SheetNameFilter | None) -> list[str]:
    return [name for name in names if keep_sheet(name, flt)]
