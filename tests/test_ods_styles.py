from sheetmerge.ods.styles import (
    BorderDef,
    CellStyleDef,
    StyleMap,
    build_style_map,
    ods_color_to_argb,
    parse_border,
    resolve_inheritance,
    to_excel_width,
    to_points,
)

from conftest import ods_content

AUTOMATIC_STYLES = (
    '<number:currency-style style:name="N1"><number:number number:decimal-places="1"/>'
    "<number:currency-symbol>€</number:currency-symbol></number:currency-style>"
    '<style:style style:name="co1" style:family="table-column">'
    '<style:table-column-properties style:column-width="2.5cm"/></style:style>'
    '<style:style style:name="ro1" style:family="table-row">'
    '<style:table-row-properties style:row-height="0.5in"/></style:style>'
    '<style:style style:name="ce1" style:family="table-cell" style:parent-style-name="Base" style:data-style-name="N1">'
    '<style:table-cell-properties fo:background-color="#ff0000" fo:border="0.06pt solid #00ff00"/>'
    '<style:paragraph-properties fo:text-align="center"/>'
    "</style:style>"
)

STYLES_XML = (
    '<?xml version="1.0" encoding="UTF-8"?><office:document-styles><office:styles>'
    '<style:style style:name="Base" style:family="table-cell">'
    '<style:text-properties fo:font-weight="bold" fo:color="#123" fo:font-size="12pt" style:font-name="Liberation Sans"/>'
    "</style:style></office:styles></office:document-styles>"
)


def test_unit_conversions():
    assert to_excel_width("2.5cm") == 11.8
    assert to_excel_width("bogus") == 8.0
    assert to_points("0.5in") == 36.0
    assert to_points("12pt") == 12.0


def test_colors_and_borders():
    assert ods_color_to_argb("#ff0000") == "FFFF0000"
    assert ods_color_to_argb("#abc") == "FFAABBCC"
    assert ods_color_to_argb("transparent") is None
    assert parse_border("0.06pt solid #000000") == BorderDef("thin", "FF000000")
    assert parse_border("2pt solid #0000ff") == BorderDef("medium", "FF0000FF")
    assert parse_border("3pt double #000000").style == "double"
    assert parse_border("none") is None


def test_build_style_map_resolves_parents_and_data_styles():
    styles = build_style_map(ods_content("", AUTOMATIC_STYLES), STYLES_XML)
    assert styles.column_widths["co1"] == 11.8
    assert styles.row_heights["ro1"] == 36.0
    cell = styles.cells["ce1"]
    assert cell.background == "FFFF0000"
    assert cell.border_top == BorderDef("thin", "FF00FF00")
    assert cell.horizontal == "center"
    assert cell.number_format == '#,##0.0 "€"'
    assert cell.bold is True
    assert cell.font_color == "FF112233"
    assert cell.font_size == 12.0
    assert cell.font_name == "Liberation Sans"
    assert cell.parent_name is None


def test_inheritance_is_bounded_on_cycles():
    styles = StyleMap(
        cells={
            "a": CellStyleDef(parent_name="b"),
            "b": CellStyleDef(parent_name="a", italic=True),
        }
    )
    resolve_inheritance(styles)
    assert styles.cells["a"].italic is True
    assert styles.cells["b"].parent_name is None
