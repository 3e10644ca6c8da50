from datetime import datetime

from sheetmerge.ods.parser import OdsCell
from sheetmerge.ods.workbook import cell_value, load_ods_workbook


def test_cell_value_types():
    assert cell_value(OdsCell(text="1,5", value_type="float", value="1.5")) == 1.5
    assert cell_value(OdsCell(text="WAHR", value_type="boolean", boolean_value="true")) is True
    assert cell_value(OdsCell(text="x", value_type="date", date_value="2024-03-01")) == datetime(2024, 3, 1)
    assert cell_value(OdsCell(text="hello", value_type="string")) == "hello"
    assert cell_value(OdsCell()) is None


def test_load_ods_workbook_applies_values_styles_and_merges(make_ods):
    automatic = (
        '<style:style style:name="co1" style:family="table-column">'
        '<style:table-column-properties style:column-width="5cm"/></style:style>'
        '<style:style style:name="ce1" style:family="table-cell">'
        '<style:table-cell-properties fo:background-color="#00ff00"/>'
        '<style:text-properties fo:font-weight="bold"/></style:style>'
    )
    tables = (
        '<table:table table:name="Data/1">'
        '<table:table-column table:style-name="co1"/>'
        "<table:table-row>"
        '<table:table-cell table:style-name="ce1" table:number-columns-spanned="2" office:value-type="string">'
        "<text:p>Title</text:p></table:table-cell><table:covered-table-cell/>"
        "</table:table-row>"
        "<table:table-row>"
        '<table:table-cell office:value-type="float" office:value="3"><text:p>3</text:p></table:table-cell>'
        '<table:table-cell office:value-type="float" office:value="4.5"><text:p>4,5</text:p></table:table-cell>'
        "</table:table-row>"
        "</table:table>"
        '<table:table table:name="Data/1"><table:table-row><table:table-cell/></table:table-row></table:table>'
    )
    wb = load_ods_workbook(make_ods("styled.ods", tables, automatic).read_bytes())
    assert wb.sheetnames == ["Data_1", "Data_1 (2)"]
    ws = wb["Data_1"]
    assert ws["A1"].value == "Title"
    assert ws["A1"].font.bold is True
    assert ws["A1"].fill.fgColor.rgb == "FF00FF00"
    assert "A1:B1" in {str(r) for r in ws.merged_cells.ranges}
    assert ws["A2"].value == 3.0
    assert ws["B2"].value == 4.5
    assert ws.column_dimensions["A"].width == 23.6
