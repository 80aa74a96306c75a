"""A small writer for Office Open XML spreadsheets (.xlsx).

It supports what the reports need: inline text and numeric cells, bold,
coloured and filled cell styles, column widths, styled tables and line charts.
"""

from __future__ import annotations

import math
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from xml.sax.saxutils import escape, quoteattr

MAX_COLUMNS = 16384
MAX_ROWS = 1048576
MAX_SHEET_NAME = 31
EMU_PER_PIXEL = 9525

_REF_RE = re.compile(r"^\$?([A-Z]{1,3})\$?([1-9][0-9]*)$")
_COLUMN_RE = re.compile(r"^[A-Z]{1,3}$")
_TABLE_NAME_RE = re.compile(r"^[A-Za-z_\\][A-Za-z0-9_.]*$")
_ILLEGAL_XML = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_BAD_SHEET_CHARS = set("[]:*?/\\")

_NS_MAIN = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
_NS_REL = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
_NS_PKG_REL = "http://schemas.openxmlformats.org/package/2006/relationships"
_NS_CT = "http://schemas.openxmlformats.org/package/2006/content-types"
_NS_XDR = "http://schemas.openxmlformats.org/drawingml/2006/spreadsheetDrawing"
_NS_A = "http://schemas.openxmlformats.org/drawingml/2006/main"
_NS_C = "http://schemas.openxmlformats.org/drawingml/2006/chart"

_REL_TYPE = _NS_REL
_CT_BASE = "application/vnd.openxmlformats-officedocument"

_LEGEND_POSITIONS = {"bottom": "b", "top": "t", "left": "l", "right": "r", "top_right": "tr"}

_XML_DECL = '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\n'


def column_letter(index: int) -> str:
    """Return the letters of the 1-based column ``index`` (1 -> A, 27 -> AA)."""
    if not 1 <= index <= MAX_COLUMNS:
        raise ValueError(f"column index out of range: {index}")
    letters = ""
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def _column_number(letters: str) -> int:
    letters = letters.upper()
    if not _COLUMN_RE.match(letters):
        raise ValueError(f"invalid column name: {letters!r}")
    number = 0
    for char in letters:
        number = number * 26 + ord(char) - ord("A") + 1
    if number > MAX_COLUMNS:
        raise ValueError(f"column out of range: {letters!r}")
    return number


def _parse_ref(ref: str) -> tuple[int, int]:
    match = _REF_RE.match(ref.strip().upper())
    if not match:
        raise ValueError(f"invalid cell reference: {ref!r}")
    row = int(match.group(2))
    if row > MAX_ROWS:
        raise ValueError(f"row out of range: {ref!r}")
    return row, _column_number(match.group(1))


def _parse_range(ref: str) -> tuple[int, int, int, int]:
    start, sep, end = ref.partition(":")
    if not sep:
        raise ValueError(f"invalid range: {ref!r}")
    row1, col1 = _parse_ref(start)
    row2, col2 = _parse_ref(end)
    return min(row1, row2), min(col1, col2), max(row1, row2), max(col1, col2)


def _cell_name(row: int, col: int) -> str:
    return f"{column_letter(col)}{row}"


def _text(value: str) -> str:
    return escape(_ILLEGAL_XML.sub("", value))


def _attr(value: str) -> str:
    return quoteattr(_ILLEGAL_XML.sub("", value))


@dataclass(frozen=True)
class CellStyle:
    """Font and fill settings for a range of cells; colours are RGB hex strings."""

    bold: bool = False
    size: float | None = None
    font_color: str | None = None
    fill_color: str | None = None


@dataclass
class ChartSeries:
    """One line of a chart: a name and category/value range formulas."""

    name: str
    categories: str
    values: str
    color: str | None = None


@dataclass
class LineChart:
    """A line chart placed on a worksheet."""

    title: str
    series: list[ChartSeries] = field(default_factory=list)
    legend_position: str = "bottom"
    width: int = 640
    height: int = 320
    show_series_name: bool = True


@dataclass
class _Table:
    ref: str
    name: str
    style_name: str


class Worksheet:
    """A sheet of cells addressed by references such as ``"B3"``."""

    def __init__(self, name: str, workbook: Workbook | None = None) -> None:
        self.name = name
        self.cells: dict[tuple[int, int], Any] = {}
        self.styles: dict[tuple[int, int], CellStyle] = {}
        self.col_widths: dict[int, float] = {}
        self.tables: list[_Table] = []
        self.charts: list[tuple[tuple[int, int], LineChart]] = []
        self._workbook = workbook

    def __getitem__(self, ref: str) -> Any:
        return self.cells.get(_parse_ref(ref))

    def set_cell(self, ref: str, value: Any) -> None:
        """Store ``value`` in the cell; None clears it."""
        position = _parse_ref(ref)
        if value is None:
            self.cells.pop(position, None)
            return
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"cannot store non-finite number in {ref}")
        if not isinstance(value, (str, int, float, bool)):
            value = str(value)
        self.cells[position] = value

    def set_style(self, start: str, end: str, style: CellStyle) -> None:
        """Apply ``style`` to every cell of the rectangle from ``start`` to ``end``."""
        row1, col1 = _parse_ref(start)
        row2, col2 = _parse_ref(end)
        for row in range(min(row1, row2), max(row1, row2) + 1):
            for col in range(min(col1, col2), max(col1, col2) + 1):
                self.styles[(row, col)] = style

    def set_col_width(self, first: str, last: str, width: float) -> None:
        """Set the width of the columns ``first`` to ``last`` (letters)."""
        if not 0 <= width <= 255:
            raise ValueError(f"column width out of range: {width}")
        start, stop = sorted((_column_number(first), _column_number(last)))
        for col in range(start, stop + 1):
            self.col_widths[col] = float(width)

    def add_table(self, ref: str, name: str, style_name: str) -> None:
        """Format the range ``ref`` as a table whose first row holds the headers."""
        _parse_range(ref)
        if not _TABLE_NAME_RE.match(name):
            raise ValueError(f"invalid table name: {name!r}")
        taken = (
            self._workbook.table_names() if self._workbook is not None
            else {t.name.lower() for t in self.tables}
        )
        if name.lower() in taken:
            raise ValueError(f"duplicate table name: {name!r}")
        self.tables.append(_Table(ref.upper(), name, style_name))

    def add_chart(self, anchor: str, chart: LineChart) -> None:
        """Place ``chart`` with its top left corner at the cell ``anchor``."""
        position = _parse_ref(anchor)
        if not chart.series:
            raise ValueError("a chart needs at least one series")
        if chart.legend_position not in _LEGEND_POSITIONS:
            raise ValueError(f"unknown legend position: {chart.legend_position!r}")
        self.charts.append((position, chart))

    def _xml(self, style_ids: dict[CellStyle, int], drawing_rel: str | None,
             table_rels: list[str]) -> str:
        parts = [_XML_DECL, f'<worksheet xmlns="{_NS_MAIN}" xmlns:r="{_NS_REL}">']
        if self.col_widths:
            parts.append("<cols>")
            for col, width in sorted(self.col_widths.items()):
                parts.append(f'<col min="{col}" max="{col}" width="{width:g}" customWidth="1"/>')
            parts.append("</cols>")
        parts.append("<sheetData>")
        positions = sorted(set(self.cells) | set(self.styles))
        current_row = None
        for row, col in positions:
            if row != current_row:
                if current_row is not None:
                    parts.append("</row>")
                parts.append(f'<row r="{row}">')
                current_row = row
            parts.append(self._cell_xml(row, col, style_ids))
        if current_row is not None:
            parts.append("</row>")
        parts.append("</sheetData>")
        if drawing_rel:
            parts.append(f'<drawing r:id="{drawing_rel}"/>')
        if table_rels:
            parts.append(f'<tableParts count="{len(table_rels)}">')
            parts.extend(f'<tablePart r:id="{rel}"/>' for rel in table_rels)
            parts.append("</tableParts>")
        parts.append("</worksheet>")
        return "".join(parts)

    def _cell_xml(self, row: int, col: int, style_ids: dict[CellStyle, int]) -> str:
        attrs = f' r="{_cell_name(row, col)}"'
        style = self.styles.get((row, col))
        if style is not None:
            attrs += f' s="{style_ids[style]}"'
        value = self.cells.get((row, col))
        if value is None:
            return f"<c{attrs}/>"
        if isinstance(value, bool):
            return f'<c{attrs} t="b"><v>{int(value)}</v></c>'
        if isinstance(value, (int, float)):
            return f"<c{attrs}><v>{value!r}</v></c>"
        return f'<c{attrs} t="inlineStr"><is><t xml:space="preserve">{_text(value)}</t></is></c>'

    def _table_columns(self, table: _Table) -> list[str]:
        row1, col1, _, col2 = _parse_range(table.ref)
        names: list[str] = []
        for offset, col in enumerate(range(col1, col2 + 1), start=1):
            value = self.cells.get((row1, col))
            name = str(value) if value not in (None, "") else f"Column{offset}"
            if name in names:
                name = f"{name}{offset}"
            names.append(name)
        return names


def _rels_xml(relations: list[tuple[str, str, str]]) -> str:
    items = "".join(
        f'<Relationship Id="{rid}" Type="{_REL_TYPE}/{kind}" Target="{target}"/>'
        for rid, kind, target in relations
    )
    return f'{_XML_DECL}<Relationships xmlns="{_NS_PKG_REL}">{items}</Relationships>'


def _styles_xml(styles: list[CellStyle]) -> str:
    fonts = ['<font><sz val="11"/><name val="Calibri"/><family val="2"/></font>']
    fills = [
        '<fill><patternFill patternType="none"/></fill>',
        '<fill><patternFill patternType="gray125"/></fill>',
    ]
    xfs = ['<xf numFmtId="0" fontId="0" fillId="0" borderId="0" xfId="0"/>']
    for style in styles:
        font = "<font>"
        if style.bold:
            font += "<b/>"
        font += f'<sz val="{style.size if style.size is not None else 11:g}"/>'
        if style.font_color:
            font += f'<color rgb="FF{style.font_color.upper()}"/>'
        font += '<name val="Calibri"/><family val="2"/></font>'
        fonts.append(font)
        fill_id = 0
        if style.fill_color:
            fills.append(
                '<fill><patternFill patternType="solid">'
                f'<fgColor rgb="FF{style.fill_color.upper()}"/><bgColor indexed="64"/>'
                "</patternFill></fill>"
            )
            fill_id = len(fills) - 1
        xfs.append(
            f'<xf numFmtId="0" fontId="{len(fonts) - 1}" fillId="{fill_id}" borderId="0" '
            f'xfId="0" applyFont="1" applyFill="{1 if fill_id else 0}"/>'
        )
    return (
        f'{_XML_DECL}<styleSheet xmlns="{_NS_MAIN}">'
        f'<fonts count="{len(fonts)}">{"".join(fonts)}</fonts>'
        f'<fills count="{len(fills)}">{"".join(fills)}</fills>'
        '<borders count="1"><border><left/><right/><top/><bottom/><diagonal/></border></borders>'
        '<cellStyleXfs count="1"><xf numFmtId="0" fontId="0" fillId="0" borderId="0"/></cellStyleXfs>'
        f'<cellXfs count="{len(xfs)}">{"".join(xfs)}</cellXfs>'
        '<cellStyles count="1"><cellStyle name="Normal" xfId="0" builtinId="0"/></cellStyles>'
        "</styleSheet>"
    )


def _table_xml(table_id: int, table: _Table, columns: list[str]) -> str:
    cols = "".join(
        f'<tableColumn id="{i}" name={_attr(name)}/>' for i, name in enumerate(columns, start=1)
    )
    return (
        f'{_XML_DECL}<table xmlns="{_NS_MAIN}" id="{table_id}" name={_attr(table.name)} '
        f'displayName={_attr(table.name)} ref="{table.ref}" totalsRowShown="0">'
        f'<autoFilter ref="{table.ref}"/>'
        f'<tableColumns count="{len(columns)}">{cols}</tableColumns>'
        f'<tableStyleInfo name={_attr(table.style_name)} showFirstColumn="0" '
        'showLastColumn="0" showRowStripes="1" showColumnStripes="0"/>'
        "</table>"
    )


def _drawing_xml(charts: list[tuple[tuple[int, int], LineChart]]) -> str:
    anchors = []
    for number, ((row, col), chart) in enumerate(charts, start=1):
        anchors.append(
            "<xdr:oneCellAnchor>"
            f"<xdr:from><xdr:col>{col - 1}</xdr:col><xdr:colOff>0</xdr:colOff>"
            f"<xdr:row>{row - 1}</xdr:row><xdr:rowOff>0</xdr:rowOff></xdr:from>"
            f'<xdr:ext cx="{chart.width * EMU_PER_PIXEL}" cy="{chart.height * EMU_PER_PIXEL}"/>'
            '<xdr:graphicFrame macro="">'
            f'<xdr:nvGraphicFramePr><xdr:cNvPr id="{number + 1}" name="Chart {number}"/>'
            "<xdr:cNvGraphicFramePr/></xdr:nvGraphicFramePr>"
            '<xdr:xfrm><a:off x="0" y="0"/><a:ext cx="0" cy="0"/></xdr:xfrm>'
            f'<a:graphic><a:graphicData uri="{_NS_C}">'
            f'<c:chart xmlns:c="{_NS_C}" xmlns:r="{_NS_REL}" r:id="rId{number}"/>'
            "</a:graphicData></a:graphic></xdr:graphicFrame><xdr:clientData/>"
            "</xdr:oneCellAnchor>"
        )
    return f'{_XML_DECL}<xdr:wsDr xmlns:xdr="{_NS_XDR}" xmlns:a="{_NS_A}">{"".join(anchors)}</xdr:wsDr>'


def _chart_xml(chart: LineChart) -> str:
    series = []
    for index, item in enumerate(chart.series):
        line = ""
        if item.color:
            line = (
                f'<c:spPr><a:ln><a:solidFill><a:srgbClr val="{item.color.upper()}"/>'
                "</a:solidFill></a:ln></c:spPr>"
            )
        series.append(
            f'<c:ser><c:idx val="{index}"/><c:order val="{index}"/>'
            f"<c:tx><c:v>{_text(item.name)}</c:v></c:tx>{line}"
            f"<c:cat><c:strRef><c:f>{_text(item.categories)}</c:f></c:strRef></c:cat>"
            f"<c:val><c:numRef><c:f>{_text(item.values)}</c:f></c:numRef></c:val>"
            '<c:smooth val="0"/></c:ser>'
        )
    show_name = 1 if chart.show_series_name else 0
    return (
        f'{_XML_DECL}<c:chartSpace xmlns:c="{_NS_C}" xmlns:a="{_NS_A}" xmlns:r="{_NS_REL}">'
        "<c:chart>"
        f"<c:title><c:tx><c:rich><a:bodyPr/><a:p><a:r><a:t>{_text(chart.title)}</a:t></a:r>"
        '</a:p></c:rich></c:tx><c:overlay val="0"/></c:title>'
        '<c:autoTitleDeleted val="0"/>'
        "<c:plotArea><c:layout/>"
        '<c:lineChart><c:grouping val="standard"/><c:varyColors val="0"/>'
        f'{"".join(series)}'
        '<c:dLbls><c:showLegendKey val="0"/><c:showVal val="0"/><c:showCatName val="0"/>'
        f'<c:showSerName val="{show_name}"/><c:showPercent val="0"/><c:showBubbleSize val="0"/>'
        "</c:dLbls>"
        '<c:marker val="1"/><c:axId val="1"/><c:axId val="2"/></c:lineChart>'
        '<c:catAx><c:axId val="1"/><c:scaling><c:orientation val="minMax"/></c:scaling>'
        '<c:delete val="0"/><c:axPos val="b"/><c:crossAx val="2"/></c:catAx>'
        '<c:valAx><c:axId val="2"/><c:scaling><c:orientation val="minMax"/></c:scaling>'
        '<c:delete val="0"/><c:axPos val="l"/><c:majorGridlines/>'
        '<c:numFmt formatCode="General" sourceLinked="1"/><c:crossAx val="1"/></c:valAx>'
        "</c:plotArea>"
        f'<c:legend><c:legendPos val="{_LEGEND_POSITIONS[chart.legend_position]}"/>'
        '<c:overlay val="0"/></c:legend><c:plotVisOnly val="1"/>'
        "</c:chart></c:chartSpace>"
    )


class Workbook:
    """An ordered collection of worksheets that can be saved as .xlsx."""

    def __init__(self) -> None:
        self.sheets: dict[str, Worksheet] = {}

    def __getitem__(self, name: str) -> Worksheet:
        return self.sheets[name]

    def table_names(self) -> set[str]:
        return {t.name.lower() for sheet in self.sheets.values() for t in sheet.tables}

    def add_sheet(self, name: str) -> Worksheet:
        """Append and return a new worksheet called ``name``."""
        if not name or len(name) > MAX_SHEET_NAME:
            raise ValueError(f"sheet name must be 1 to {MAX_SHEET_NAME} characters: {name!r}")
        if _BAD_SHEET_CHARS & set(name) or name.startswith("'") or name.endswith("'"):
            raise ValueError(f"invalid sheet name: {name!r}")
        if name.lower() in {existing.lower() for existing in self.sheets}:
            raise ValueError(f"duplicate sheet name: {name!r}")
        sheet = Worksheet(name, self)
        self.sheets[name] = sheet
        return sheet

    def save(self, path: str | Path) -> Path:
        """Write the workbook to ``path`` and return it."""
        if not self.sheets:
            raise ValueError("a workbook needs at least one sheet")
        path = Path(path)
        style_list: list[CellStyle] = []
        for sheet in self.sheets.values():
            for style in sheet.styles.values():
                if style not in style_list:
                    style_list.append(style)
        style_ids = {style: index for index, style in enumerate(style_list, start=1)}

        overrides = [
            ("/xl/workbook.xml", f"{_CT_BASE}.spreadsheetml.sheet.main+xml"),
            ("/xl/styles.xml", f"{_CT_BASE}.spreadsheetml.styles+xml"),
        ]
        files: dict[str, str] = {}
        workbook_rels = []
        sheet_entries = []
        table_count = drawing_count = chart_count = 0

        for number, sheet in enumerate(self.sheets.values(), start=1):
            rid = f"rId{number}"
            workbook_rels.append((rid, "worksheet", f"worksheets/sheet{number}.xml"))
            sheet_entries.append(f'<sheet name={_attr(sheet.name)} sheetId="{number}" r:id="{rid}"/>')
            overrides.append(
                (f"/xl/worksheets/sheet{number}.xml", f"{_CT_BASE}.spreadsheetml.worksheet+xml")
            )
            sheet_rels: list[tuple[str, str, str]] = []
            drawing_rel = None
            if sheet.charts:
                drawing_count += 1
                drawing_rel = f"rId{len(sheet_rels) + 1}"
                sheet_rels.append((drawing_rel, "drawing", f"../drawings/drawing{drawing_count}.xml"))
                chart_rels = []
                for offset, (_, chart) in enumerate(sheet.charts, start=1):
                    chart_count += 1
                    chart_rels.append((f"rId{offset}", "chart", f"../charts/chart{chart_count}.xml"))
                    files[f"xl/charts/chart{chart_count}.xml"] = _chart_xml(chart)
                    overrides.append(
                        (f"/xl/charts/chart{chart_count}.xml", f"{_CT_BASE}.drawingml.chart+xml")
                    )
                files[f"xl/drawings/drawing{drawing_count}.xml"] = _drawing_xml(sheet.charts)
                files[f"xl/drawings/_rels/drawing{drawing_count}.xml.rels"] = _rels_xml(chart_rels)
                overrides.append(
                    (f"/xl/drawings/drawing{drawing_count}.xml", f"{_CT_BASE}.drawing+xml")
                )
            table_rels = []
            for table in sheet.tables:
                table_count += 1
                rel = f"rId{len(sheet_rels) + 1}"
                sheet_rels.append((rel, "table", f"../tables/table{table_count}.xml"))
                table_rels.append(rel)
                files[f"xl/tables/table{table_count}.xml"] = _table_xml(
                    table_count, table, sheet._table_columns(table)
                )
                overrides.append(
                    (f"/xl/tables/table{table_count}.xml", f"{_CT_BASE}.spreadsheetml.table+xml")
                )
            files[f"xl/worksheets/sheet{number}.xml"] = sheet._xml(style_ids, drawing_rel, table_rels)
            if sheet_rels:
                files[f"xl/worksheets/_rels/sheet{number}.xml.rels"] = _rels_xml(sheet_rels)

        workbook_rels.append((f"rId{len(self.sheets) + 1}", "styles", "styles.xml"))
        files["xl/workbook.xml"] = (
            f'{_XML_DECL}<workbook xmlns="{_NS_MAIN}" xmlns:r="{_NS_REL}">'
            f'<sheets>{"".join(sheet_entries)}</sheets></workbook>'
        )
        files["xl/_rels/workbook.xml.rels"] = _rels_xml(workbook_rels)
        files["xl/styles.xml"] = _styles_xml(style_list)
        files["_rels/.rels"] = _rels_xml([("rId1", "officeDocument", "xl/workbook.xml")])
        override_xml = "".join(
            f'<Override PartName="{part}" ContentType="{kind}"/>' for part, kind in overrides
        )
        files["[Content_Types].xml"] = (
            f'{_XML_DECL}<Types xmlns="{_NS_CT}">'
            '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
            '<Default Extension="xml" ContentType="application/xml"/>'
            f"{override_xml}</Types>"
        )

        with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as archive:
            archive.writestr("[Content_Types].xml", files.pop("[Content_Types].xml"))
            for name, content in files.items():
                archive.writestr(name, content)
        return path