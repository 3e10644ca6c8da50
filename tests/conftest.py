from pathlib import Path
import sys
import zipfile

import pytest
from openpyxl import Workbook


SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


ODS_NAMESPACES = (
    'xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0" '
    'xmlns:style="urn:oasis:names:tc:opendocument:xmlns:style:1.0" '
    'xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0" '
    'xmlns:table="urn:oasis:names:tc:opendocument:xmlns:table:1.0" '
    'xmlns:fo="urn:oasis:names:tc:opendocument:xmlns:xsl-fo-compatible:1.0" '
    'xmlns:number="urn:oasis:names:tc:opendocument:xmlns:datastyle:1.0" '
    'office:version="1.2"'
)


def ods_content(tables: str, automatic_styles: str = "") -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<office:document-content {ODS_NAMESPACES}>"
        f"<office:automatic-styles>{automatic_styles}</office:automatic-styles>"
        f"<office:body><office:spreadsheet>{tables}</office:spreadsheet></office:body>"
        "</office:document-content>"
    )


def ods_bytes_to(path: Path, content_xml: str, styles_xml: str | None = None) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.spreadsheet", zipfile.ZIP_STORED)
        archive.writestr("content.xml", content_xml)
        if styles_xml is not None:
            archive.writestr("styles.xml", styles_xml)
        archive.writestr(
            "META-INF/manifest.xml",
            '<?xml version="1.0" encoding="UTF-8"?><manifest:manifest '
            'xmlns:manifest="urn:oasis:names:tc:opendocument:xmlns:manifest:1.0"/>',
        )
    return path


def xlsx_to(path: Path, sheets: dict[str, list[list[object]]]) -> Path:
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title=title)
        for row in rows:
            ws.append(row)
    wb.save(path)
    return path


@pytest.fixture
def make_xlsx(tmp_path):
    def _make(name: str, sheets: dict[str, list[list[object]]]) -> Path:
        return xlsx_to(tmp_path / name, sheets)

    return _make


@pytest.fixture
def make_ods(tmp_path):
    def _make(name: str, tables: str, automatic_styles: str = "", styles_xml: str | None = None) -> Path:
        return ods_bytes_to(tmp_path / name, ods_content(tables, automatic_styles), styles_xml)

    return _make


@pytest.fixture
def amount_files(make_xlsx):
    first = make_xlsx("north.xlsx", {"Sheet1": [["Name", "Amount"], ["A", 10]]})
    second = make_xlsx("south.xlsx", {"Sheet1": [["Name", "Amount"], ["B", 20]]})
    return first, second
