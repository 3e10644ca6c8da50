import zipfile

from openpyxl import load_workbook

from sheetmerge.adapters.formula_cache import patch_sheet_xml, sheet_parts, write_formula_results


def test_patch_sets_value_only_on_formula_cells():
    xml = (
        '<sheetData><row r="1">'
        '<c r="A1" s="1"/>'
        '<c r="B1" t="n"><v>4</v></c>'
        '<c r="C1" t="str"><f>B1*2</f><v></v></c>'
        '<c r="D1"><f>B1*3</f><v />'
        "</c></row></sheetData>"
    )
    patched = patch_sheet_xml(xml, {"A1": 1, "B1": 9, "C1": 8, "D1": 12.5})
    assert '<c r="A1" s="1"/>' in patched
    assert '<c r="B1" t="n"><v>4</v></c>' in patched
    assert '<c r="C1"><f>B1*2</f><v>8</v></c>' in patched
    assert '<c r="D1"><f>B1*3</f><v>12.5</v></c>' in patched


def test_write_results_keeps_other_parts(make_xlsx):
    path = make_xlsx("calc.xlsx", {"First": [[1, "=A1+1"]], "Second": [[2, "=A1+1"]]})
    with zipfile.ZipFile(path) as archive:
        before = archive.namelist()
        parts = sheet_parts(archive)
    assert set(parts) == {"First", "Second"}

    write_formula_results(str(path), {"Second": {"B1": 3}, "Missing": {"A1": 1}})

    with zipfile.ZipFile(path) as archive:
        assert archive.namelist() == before
    values = load_workbook(path, data_only=True)
    assert values["First"]["B1"].value is None
    assert values["Second"]["B1"].value == 3
    assert load_workbook(path)["Second"]["B1"].value == "=A1+1"
