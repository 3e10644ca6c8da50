"""Cell, column and row styles of an ODS document.

Named styles come from ``styles.xml`` and automatic styles from
``content.xml``; both land in one :class:`StyleMap`. Parent-style inheritance
is resolved by a fixed number of passes, which also bounds cyclic chains.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields

from sheetmerge.ods.tokenizer import Token, TokenKind, tokenize

INHERITANCE_PASSES = 6
DEFAULT_WIDTH = 8.0
DEFAULT_HEIGHT = 15.0
DEFAULT_BORDER_COLOR = "FF000000"

_LENGTH = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([a-z]*)")
_WIDTH_FACTORS = {"cm": 4.72, "mm": 0.472, "in": 12.0, "pt": 0.167}
_POINT_FACTORS = {"cm": 28.35, "mm": 2.835, "in": 72.0, "pt": 1.0}
_H_ALIGN = {"center": "center", "right": "right", "end": "right", "left": "left", "start": "left", "justify": "justify"}
_V_ALIGN = {"middle": "center", "center": "center", "top": "top", "bottom": "bottom"}
_NUMBER_STYLES = {"number-style", "currency-style", "percentage-style"}


@dataclass(frozen=True)
class BorderDef:
    style: str
    color: str = DEFAULT_BORDER_COLOR


@dataclass
class CellStyleDef:
    background: str | None = None
    bold: bool | None = None
    italic: bool | None = None
    underline: bool | None = None
    font_color: str | None = None
    font_size: float | None = None
    font_name: str | None = None
    border_top: BorderDef | None = None
    border_bottom: BorderDef | None = None
    border_left: BorderDef | None = None
    border_right: BorderDef | None = None
    horizontal: str | None = None
    vertical: str | None = None
    wrap: bool | None = None
    number_format: str | None = None
    parent_name: str | None = field(default=None, compare=False)
    data_style_name: str | None = field(default=None, compare=False)

    def inherit_from(self, parent: "CellStyleDef") -> None:
        for f in fields(self):
            if f.name in ("parent_name", "data_style_name"):
                continue
            if getattr(self, f.name) is None and getattr(parent, f.name) is not None:
                setattr(self, f.name, getattr(parent, f.name))

    @property
    def is_empty(self) -> bool:
        return all(
            getattr(self, f.name) is None for f in fields(self) if f.name not in ("parent_name", "data_style_name")
        )


@dataclass
class StyleMap:
    cells: dict[str, CellStyleDef] = field(default_factory=dict)
    column_widths: dict[str, float] = field(default_factory=dict)
    row_heights: dict[str, float] = field(default_factory=dict)
    number_formats: dict[str, str] = field(default_factory=dict)


def _split_length(value: str) -> tuple[float, str] | None:
    m = _LENGTH.match(value or "")
    if not m:
        return None
    number = float(m.group(1))
    if number <= 0:
        return None
    return number, m.group(2)


def to_excel_width(value: str) -> float:
    """Convert an ODF length to spreadsheet column-width units."""

    parsed = _split_length(value)
    if parsed is None or parsed[1] not in _WIDTH_FACTORS:
        return DEFAULT_WIDTH
    number, unit = parsed
    return max(1.0, round(number * _WIDTH_FACTORS[unit], 1))


def to_points(value: str) -> float:
    parsed = _split_length(value)
    if parsed is None or parsed[1] not in _POINT_FACTORS:
        return DEFAULT_HEIGHT
    number, unit = parsed
    return round(number * _POINT_FACTORS[unit], 1)


def ods_color_to_argb(color: str | None) -> str | None:
    if not color or not color.startswith("#"):
        return None
    hex_part = color[1:]
    if len(hex_part) == 3:
        hex_part = "".join(ch * 2 for ch in hex_part)
    if len(hex_part) != 6 or not re.fullmatch(r"[0-9a-fA-F]{6}", hex_part):
        return None
    return "FF" + hex_part.upper()


def parse_border(value: str | None) -> BorderDef | None:
    """Parse ``"<width> <style> <color>"``; ``None`` for ``none`` or garbage."""

    if not value or value.strip() == "none":
        return None
    parts = value.split()
    if len(parts) < 2:
        return None
    parsed = _split_length(parts[0])
    width = parsed[0] if parsed else 0.0
    if parsed and parsed[1] in _POINT_FACTORS:
        width = parsed[0] * _POINT_FACTORS[parsed[1]]
    kind = parts[1]
    if kind == "none" or kind == "hidden":
        return None
    if kind == "dashed":
        style = "mediumDashed" if width >= 1.5 else "dashed"
    elif kind == "dotted":
        style = "dotted"
    elif kind == "double":
        style = "double"
    else:
        style = "thick" if width >= 2.25 else "medium" if width >= 1.5 else "thin"
    color = ods_color_to_argb(parts[2]) if len(parts) > 2 else None
    return BorderDef(style=style, color=color or DEFAULT_BORDER_COLOR)


def _number_format(kind: str, decimals: int | None, symbol: str) -> str:
    places = 2 if decimals is None else decimals
    fraction = "." + "0" * places if places > 0 else ""
    if kind == "currency-style":
        return f'#,##0{fraction} "{symbol or "€"}"'
    if kind == "percentage-style":
        return f"0{fraction}%"
    return f"#,##0{fraction}"


def _apply_cell_properties(token: Token, style: CellStyleDef) -> None:
    background = ods_color_to_argb(token.get("background-color"))
    if background:
        style.background = background

    shorthand = token.get("border")
    if shorthand:
        edge = parse_border(shorthand)
        style.border_top = style.border_bottom = style.border_left = style.border_right = edge
    for side in ("top", "bottom", "left", "right"):
        raw = token.get(f"border-{side}")
        if raw:
            setattr(style, f"border_{side}", parse_border(raw))

    if token.get("wrap-option") == "wrap":
        style.wrap = True
    vertical = _V_ALIGN.get(token.get("vertical-align") or "")
    if vertical:
        style.vertical = vertical


def _apply_text_properties(token: Token, style: CellStyleDef) -> None:
    if token.get("font-weight") == "bold":
        style.bold = True
    if token.get("font-style") == "italic":
        style.italic = True
    underline = token.get("text-underline-style")
    if underline and underline != "none":
        style.underline = True
    color = ods_color_to_argb(token.get("color"))
    if color:
        style.font_color = color
    size = _split_length(token.get("font-size") or "")
    if size and size[1] in ("pt", ""):
        style.font_size = size[0]
    name = token.get("font-name") or token.get("font-family")
    if name:
        style.font_name = name.strip("'\"")


def build_style_map(content_xml: str, styles_xml: str | None = None) -> StyleMap:
    style_map = StyleMap()
    for xml in (styles_xml, content_xml):
        if xml:
            _collect_styles(xml, style_map)
    for style in style_map.cells.values():
        if style.data_style_name and style.number_format is None:
            style.number_format = style_map.number_formats.get(style.data_style_name)
    resolve_inheritance(style_map)
    return style_map


def _collect_styles(xml: str, style_map: StyleMap) -> None:
    current: CellStyleDef | None = None
    name = family = ""
    number_kind = number_name = symbol = ""
    decimals: int | None = None
    in_symbol = False

    for token in tokenize(xml):
        local = token.local
        if token.kind is TokenKind.TEXT:
            if in_symbol:
                symbol += token.text.strip()
            continue

        if local in _NUMBER_STYLES:
            if token.kind is TokenKind.OPEN:
                number_kind, number_name, symbol, decimals = local, token.get("name") or "", "", None
            elif token.kind is TokenKind.CLOSE and number_name:
                style_map.number_formats[number_name] = _number_format(number_kind, decimals, symbol)
                number_kind = number_name = ""
            continue
        if number_kind:
            if local == "number" and token.opens and decimals is None:
                raw = token.get("decimal-places")
                decimals = int(raw) if raw and raw.isdigit() else None
            elif local == "currency-symbol":
                in_symbol = token.kind is TokenKind.OPEN
            continue

        if local == "style":
            if token.opens:
                name = token.get("name") or ""
                family = token.get("family") or ""
                current = CellStyleDef(
                    parent_name=token.get("parent-style-name"),
                    data_style_name=token.get("data-style-name"),
                )
            if token.kind is not TokenKind.OPEN:
                if current is not None and family == "table-cell" and name:
                    style_map.cells[name] = current
                current = None
                name = family = ""
            continue

        if current is None or not token.opens:
            continue
        if local == "table-column-properties" and family == "table-column":
            width = token.get("column-width")
            if width:
                style_map.column_widths[name] = to_excel_width(width)
        elif local == "table-row-properties" and family == "table-row":
            height = token.get("row-height") or token.get("min-row-height")
            if height:
                style_map.row_heights[name] = to_points(height)
        elif local == "table-cell-properties":
            _apply_cell_properties(token, current)
        elif local == "text-properties":
            _apply_text_properties(token, current)
        elif local == "paragraph-properties":
            horizontal = _H_ALIGN.get(token.get("text-align") or "")
            if horizontal:
                current.horizontal = horizontal


def resolve_inheritance(style_map: StyleMap, passes: int = INHERITANCE_PASSES) -> None:
    """Copy unset attributes from parent styles, then drop the parent links."""

    for _ in range(passes):
        for style in style_map.cells.values():
            if not style.parent_name:
                continue
            parent = style_map.cells.get(style.parent_name)
            if parent is not None and parent is not style:
                style.inherit_from(parent)
    for style in style_map.cells.values():
        style.parent_name = None
