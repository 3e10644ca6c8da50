import pytest
from openpyxl import Workbook
from openpyxl.chart import BarChart, Reference

from sheetmerge.adapters.workbook_io import (
    CSV_SHEET_NAME,
    WorkbookLoader,
    coerce_number,
    detect_delimiter,
    read_delimited,
)
from sheetmerge.core.errors import UnreadableFile
from sheetmerge.core.models import FileRef, SheetSourceRef


def test_detect_delimiter():
    assert detect_delimiter("a;b;c\n1;2;3\n") == ";"
    assert detect_delimiter("a\tb\n1\t2\n") == "\t"
    assert detect_delimiter("single column\n") == ","


def test_coerce_number():
    assert coerce_number("42") == 42
    assert isinstance(coerce_number("42"), int)
    assert coerce_number("4.5") == 4.5
    assert coerce_number("abc") == "abc"
    assert coerce_number("  ") is None
    assert coerce_number("nan") == "nan"


def test_read_delimited_handles_bom_and_ragged_rows(tmp_path):
    path = tmp_path / "data.csv"
    path.write_bytes("\ufeffName;Amount\nA;10\nB;2.5;extra\n".encode("utf-8"))
    assert read_delimited(str(path)) == [["Name", "Amount"], ["A", 10], ["B", 2.5, "extra"]]


def test_read_delimited_falls_back_to_cp1252(tmp_path):
    path = tmp_path / "legacy.csv"
    path.write_bytes("Straße,Wert\nMünchen,3\n".encode("cp1252"))
    rows = read_delimited(str(path))
    assert rows[1] == ["München", 3]


def test_loader_reads_csv_as_single_sheet(tmp_path):
    path = tmp_path / "data.csv"
    path.write_text("Name,Amount\nA,10\n", encoding="utf-8")
    ref = FileRef(str(path), "data.csv")
    loader = WorkbookLoader()
    assert loader.sheet_names(ref) == [CSV_SHEET_NAME]
    ws = loader.load_sheet(SheetSourceRef(str(path), "data.csv", CSV_SHEET_NAME, 0))
    assert ws["A1"].value == "Name"
    assert ws["B2"].value == 10


def test_loader_caches_last_workbook(make_xlsx):
    path = make_xlsx("a.xlsx", {"S": [[1]]})
    ref = FileRef(str(path), "a.xlsx")
    loader = WorkbookLoader()
    assert loader.load_workbook(ref) is loader.load_workbook(ref)
    assert loader.load_workbook(ref, data_only=True) is not loader.load_workbook(ref)
    loader.release()


def test_loader_wraps_errors(tmp_path):
    broken = tmp_path / "broken.ods"
    broken.write_bytes(b"nope")
    loader = WorkbookLoader()
    with pytest.raises(UnreadableFile):
        loader.sheet_names(FileRef(str(broken), "broken.ods"))
    with pytest.raises(UnreadableFile, match="xls"):
        loader.sheet_names(FileRef(str(broken), "old.xls"))


def test_read_rows_for_ods_prefers_numbers(make_ods):
    tables = (
        '<table:table table:name="S"><table:table-row>'
        '<table:table-cell office:value-type="string"><text:p>x</text:p></table:table-cell>'
        '<table:table-cell office:value-type="float" office:value="1.25"><text:p>1,25</text:p></table:table-cell>'
        "</table:table-row></table:table>"
    )
    path = make_ods("n.ods", tables)
    assert WorkbookLoader().read_rows(FileRef(str(path), "n.ods")) == [("S", [["x", 1.25]])]


def test_chartsheets_do_not_shift_sheet_indices(tmp_path):
    path = tmp_path / "charts.xlsx"
    wb = Workbook()
    data = wb.active
    data.title = "Data"
    data.append(["Month", "Sales"])
    data.append(["Jan", 5])
    wb.create_sheet("Second")["A1"] = "second"
    chart = BarChart()
    chart.add_data(Reference(data, min_col=2, min_row=1, max_row=2), titles_from_data=True)
    wb.create_chartsheet("Chart", 0).add_chart(chart)
    wb.save(path)

    ref = FileRef(str(path), "charts.xlsx")
    loader = WorkbookLoader()
    names = loader.sheet_names(ref)
    assert names == ["Data", "Second"]
    for index, name in enumerate(names):
        ws = loader.load_sheet(SheetSourceRef(str(path), "charts.xlsx", name, index))
        assert ws.title == name
    assert [title for title, _ in loader.read_rows(ref)] == names
