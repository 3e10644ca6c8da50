"""Cached results for formula cells of a saved xlsx package.

openpyxl writes formula cells without a value, so readers that do not
recalculate see nothing. ``write_formula_results`` patches the ``<v>``
element of the named cells after the workbook has been saved.
"""

from __future__ import annotations

import os
import posixpath
import re
import tempfile
import zipfile
from collections.abc import Mapping
from xml.etree import ElementTree as ET

from openpyxl.compat import safe_string

MAIN_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
OFFICE_REL_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PACKAGE_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"

FormulaResults = Mapping[str, Mapping[str, object]]

_CELL = re.compile(r"<c\s(?P<attrs>[^>]*?)(?<!/)>(?P<body>.*?)</c>", re.S)
_REF = re.compile(r'\br="(?P<ref>[A-Z]+[0-9]+)"')
_TYPE = re.compile(r'\st="[^"]*"')
_VALUE = re.compile(r"<v\s*/>|<v>.*?</v>", re.S)


def _normalize_part(target: str) -> str:
    if target.startswith("/"):
        return posixpath.normpath(target.lstrip("/"))
    return posixpath.normpath(posixpath.join("xl", target))


def sheet_parts(archive: zipfile.ZipFile) -> dict[str, str]:
    """Map sheet titles to their part names inside ``archive``."""

    workbook = ET.fromstring(archive.read("xl/workbook.xml"))
    rels = ET.fromstring(archive.read("xl/_rels/workbook.xml.rels"))
    targets = {
        rel.get("Id"): rel.get("Target")
        for rel in rels.iter(f"{{{PACKAGE_REL_NS}}}Relationship")
    }
    parts: dict[str, str] = {}
    for sheet in workbook.iter(f"{{{MAIN_NS}}}sheet"):
        target = targets.get(sheet.get(f"{{{OFFICE_REL_NS}}}id"))
        if target:
            parts[sheet.get("name", "")] = _normalize_part(target)
    return parts


def patch_sheet_xml(xml: str, results: Mapping[str, object]) -> str:
    """Set the cached value of each formula cell named in ``results``."""

    def replace(match: re.Match[str]) -> str:
        attrs, body = match.group("attrs"), match.group("body")
        ref = _REF.search(attrs)
        if ref is None or ref.group("ref") not in results or "<f" not in body:
            return match.group(0)
        value = safe_string(results[ref.group("ref")])
        body = _VALUE.sub("", body) + f"<v>{value}</v>"
        return f"<c {_TYPE.sub('', attrs)}>{body}</c>"

    return _CELL.sub(replace, xml)


def write_formula_results(path: str, results: FormulaResults) -> None:
    """Rewrite ``path`` in place with cached formula results per sheet title."""

    if not any(results.values()):
        return
    with zipfile.ZipFile(path) as archive:
        parts = sheet_parts(archive)
        replacements: dict[str, bytes] = {}
        for title, cells in results.items():
            part = parts.get(title)
            if part is None or not cells:
                continue
            xml = archive.read(part).decode("utf-8")
            replacements[part] = patch_sheet_xml(xml, cells).encode("utf-8")
        if not replacements:
            return

        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(os.path.abspath(path)), suffix=".xlsx")
        os.close(fd)
        try:
            with zipfile.ZipFile(tmp, "w", zipfile.ZIP_DEFLATED) as out:
                for info in archive.infolist():
                    data = replacements.get(info.filename)
                    out.writestr(info, data if data is not None else archive.read(info))
        except BaseException:
            os.remove(tmp)
            raise
    os.replace(tmp, path)
