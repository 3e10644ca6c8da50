import zipfile

import pytest

from sheetmerge.core.errors import UnreadableFile
from sheetmerge.ods.parser import MAX_COLUMNS, ods_sheet_names, parse_ods, parse_ods_rich, read_tables

from conftest import ods_content


def _bytes(path):
    return path.read_bytes()


def test_merged_block_and_repeated_columns(make_ods):
    tables = (
        '<table:table table:name="Grid">'
        "<table:table-row>"
        '<table:table-cell table:number-columns-spanned="2" table:number-rows-spanned="2" office:value-type="string">'
        "<text:p>M</text:p></table:table-cell>"
        "<table:covered-table-cell/>"
        '<table:table-cell table:number-columns-repeated="3" office:value-type="float" office:value="7">'
        "<text:p>7</text:p></table:table-cell>"
        "</table:table-row>"
        "<table:table-row><table:covered-table-cell table:number-columns-repeated=\"2\"/></table:table-row>"
        "</table:table>"
    )
    path = make_ods("grid.ods", tables)
    [sheet] = parse_ods(_bytes(path))
    assert sheet.name == "Grid"
    assert sheet.rows == [["M", "", "7", "7", "7"]]
    assert len(sheet.merges) == 1
    merge = sheet.merges[0]
    assert (merge.row, merge.col, merge.end_row, merge.end_col) == (1, 1, 2, 2)


def test_trailing_repeats_do_not_materialize():
    content = ods_content(
        '<table:table table:name="S">'
        '<table:table-column table:number-columns-repeated="16384"/>'
        "<table:table-row>"
        "<table:table-cell><text:p>a</text:p></table:table-cell>"
        '<table:table-cell table:number-columns-repeated="16383"/>'
        "</table:table-row>"
        '<table:table-row table:number-rows-repeated="1048575"><table:table-cell table:number-columns-repeated="16384"/></table:table-row>'
        "</table:table>"
    )
    [table] = read_tables(content)
    assert len(table.rows) == 1
    assert len(table.rows[0]) == 1


def test_repeated_empty_cells_before_a_value_stop_at_the_column_limit():
    content = ods_content(
        '<table:table table:name="S">'
        "<table:table-row>"
        "<table:table-cell><text:p>a</text:p></table:table-cell>"
        '<table:table-cell table:number-columns-repeated="5000000"/>'
        "<table:table-cell><text:p>x</text:p></table:table-cell>"
        "</table:table-row>"
        "</table:table>"
    )
    [table] = read_tables(content)
    [row] = table.rows
    assert len(row) == MAX_COLUMNS
    assert row[0].text == "a"
    assert row[-1].is_empty


def test_leading_empty_rows_keep_positions(make_ods):
    tables = (
        '<table:table table:name="S">'
        '<table:table-row table:number-rows-repeated="2"><table:table-cell/></table:table-row>'
        "<table:table-row><table:table-cell/><table:table-cell><text:p>x</text:p></table:table-cell></table:table-row>"
        "</table:table>"
    )
    [sheet] = parse_ods(_bytes(make_ods("pos.ods", tables)))
    assert sheet.rows == [[], [], ["", "x"]]


def test_cell_text_spaces_line_breaks_and_annotations(make_ods):
    tables = (
        '<table:table table:name="S"><table:table-row><table:table-cell>'
        "<office:annotation><text:p>ignored</text:p></office:annotation>"
        '<text:p>a<text:s text:c="2"/>b<text:tab/>c</text:p><text:p>second</text:p>'
        "</table:table-cell></table:table-row></table:table>"
    )
    [sheet] = parse_ods(_bytes(make_ods("text.ods", tables)))
    assert sheet.rows == [["a  b\tc\nsecond"]]


def test_rich_cells_keep_numbers_and_booleans(make_ods):
    tables = (
        '<table:table table:name="S"><table:table-row>'
        '<table:table-cell office:value-type="currency" office:value="12.5"><text:p>12,50 €</text:p></table:table-cell>'
        '<table:table-cell office:value-type="boolean" office:boolean-value="true"><text:p>WAHR</text:p></table:table-cell>'
        "</table:table-row></table:table>"
    )
    [sheet] = parse_ods_rich(_bytes(make_ods("rich.ods", tables)))
    first, second = sheet.rows[0]
    assert first.text == "12,50 €"
    assert first.number == 12.5
    assert second.text == "TRUE"
    assert second.number is None


def test_sheet_names_and_nested_tables(make_ods):
    tables = (
        '<table:table table:name="One"><table:table-row><table:table-cell>'
        '<table:table table:name="Inner"/>'
        "</table:table-cell></table:table-row></table:table>"
        '<table:table table:name="Two"></table:table>'
    )
    assert ods_sheet_names(_bytes(make_ods("names.ods", tables))) == ["One", "Two"]


def test_invalid_archives_raise_unreadable(tmp_path):
    with pytest.raises(UnreadableFile, match="not a zip"):
        parse_ods(b"garbage", "bad.ods")

    path = tmp_path / "empty.ods"
    with zipfile.ZipFile(path, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.spreadsheet")
    with pytest.raises(UnreadableFile) as info:
        parse_ods(path.read_bytes(), "empty.ods")
    assert info.value.filename == "empty.ods"
    assert "content.xml" in info.value.reason
