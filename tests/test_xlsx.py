import zipfile
import xml.etree.ElementTree as ET

import pytest

from ghfindings.xlsx import CellStyle, ChartSeries, LineChart, Workbook, column_letter

MAIN = "{http://schemas.openxmlformats.org/spreadsheetml/2006/main}"


def _xml(path, name):
    with zipfile.ZipFile(path) as archive:
        return ET.fromstring(archive.read(name))


def test_column_letter_pins():
    assert column_letter(1) == "A"
    assert column_letter(26) == "Z"
    assert column_letter(27) == "AA"


@pytest.mark.parametrize("bad", [0, -1, 16385])
def test_column_letter_out_of_range(bad):
    with pytest.raises(ValueError):
        column_letter(bad)


def test_set_cell_round_trip_and_clear():
    sheet = Workbook().add_sheet("Data")
    sheet.set_cell("B3", "hello")
    sheet.set_cell("C4", 42)
    assert sheet["B3"] == "hello"
    assert sheet["C4"] == 42
    sheet.set_cell("B3", None)
    assert sheet["B3"] is None


@pytest.mark.parametrize("ref", ["3B", "", "A0", "A1:B2"])
def test_invalid_reference(ref):
    sheet = Workbook().add_sheet("Data")
    with pytest.raises(ValueError):
        sheet.set_cell(ref, 1)


def test_non_finite_number_rejected():
    sheet = Workbook().add_sheet("Data")
    with pytest.raises(ValueError):
        sheet.set_cell("A1", float("nan"))


def test_set_style_covers_rectangle():
    sheet = Workbook().add_sheet("Data")
    style = CellStyle(bold=True)
    sheet.set_style("C2", "A1", style)
    assert len(sheet.styles) == 6
    assert all(value == style for value in sheet.styles.values())


def test_col_width_range():
    sheet = Workbook().add_sheet("Data")
    sheet.set_col_width("B", "D", 15)
    assert sheet.col_widths == {2: 15.0, 3: 15.0, 4: 15.0}
    with pytest.raises(ValueError):
        sheet.set_col_width("A", "A", 300)


def test_duplicate_and_invalid_sheet_names():
    book = Workbook()
    book.add_sheet("Summary")
    with pytest.raises(ValueError):
        book.add_sheet("summary")
    with pytest.raises(ValueError):
        book.add_sheet("bad/name")
    with pytest.raises(ValueError):
        book.add_sheet("x" * 32)


def test_table_name_rules():
    book = Workbook()
    first = book.add_sheet("One")
    second = book.add_sheet("Two")
    first.add_table("A1:B2", "FindingsTable", "TableStyleMedium9")
    with pytest.raises(ValueError):
        second.add_table("A1:B2", "FindingsTable", "TableStyleMedium9")
    with pytest.raises(ValueError):
        second.add_table("A1:B2", "1bad name", "TableStyleMedium9")


def test_chart_requires_series():
    sheet = Workbook().add_sheet("Data")
    with pytest.raises(ValueError):
        sheet.add_chart("L5", LineChart(title="Empty"))


def test_save_empty_workbook_fails(tmp_path):
    with pytest.raises(ValueError):
        Workbook().save(tmp_path / "out.xlsx")


def test_save_round_trip(tmp_path):
    book = Workbook()
    sheet = book.add_sheet("Findings")
    sheet.set_cell("A1", "Repository")
    sheet.set_cell("B1", "Count")
    sheet.set_cell("A2", "alpha & beta")
    sheet.set_cell("B2", 42)
    header = CellStyle(bold=True, font_color="FFFFFF", fill_color="366092")
    sheet.set_style("A1", "B1", header)
    sheet.add_table("A1:B2", "FindingsTable", "TableStyleMedium9")
    other = book.add_sheet("Timeline")
    other.set_cell("A2", "2024-Q1")
    other.add_chart(
        "L5",
        LineChart(
            title="Trend",
            series=[ChartSeries("Series", "Timeline!$A$2:$A$3", "Timeline!$B$2:$B$3", "FF0000")],
        ),
    )
    path = book.save(tmp_path / "out.xlsx")

    workbook = _xml(path, "xl/workbook.xml")
    names = [s.get("name") for s in workbook.iter(f"{MAIN}sheet")]
    assert names == ["Findings", "Timeline"]

    data = _xml(path, "xl/worksheets/sheet1.xml")
    texts = [t.text for t in data.iter(f"{MAIN}t")]
    assert texts == ["Repository", "Count", "alpha & beta"]
    values = [v.text for v in data.iter(f"{MAIN}v")]
    assert values == ["42"]
    header_styles = {c.get("s") for c in data.iter(f"{MAIN}c") if c.get("r") in ("A1", "B1")}
    assert len(header_styles) == 1 and header_styles != {"0"}

    table = _xml(path, "xl/tables/table1.xml")
    columns = [c.get("name") for c in table.iter(f"{MAIN}tableColumn")]
    assert columns == ["Repository", "Count"]
    assert table.get("ref") == "A1:B2"

    with zipfile.ZipFile(path) as archive:
        chart = archive.read("xl/charts/chart1.xml").decode()
        assert "Timeline!$B$2:$B$3" in chart
        assert "xl/drawings/drawing1.xml" in archive.namelist()