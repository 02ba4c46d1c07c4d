"""Tests for chart CSV export."""

import csv

from export import CHART_FIELDS, export_chart_csv
from telemetry_reducer import ChartPoint


def test_writes_header_and_rows(tmp_path):
    series = [
        ChartPoint(timestamp="12:00:00 PM", ph=7.0, temperature=24.0, turbidity=2.0, tds=200.0),
        ChartPoint(timestamp="12:00:02 PM", ph=7.1, temperature=24.5, turbidity=2.5, tds=210.0),
    ]
    out = export_chart_csv(series, out_path=str(tmp_path / "out" / "chart.csv"))

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == CHART_FIELDS
    assert rows[1] == ["12:00:00 PM", "7.0", "24.0", "2.0", "200.0"]
    assert len(rows) == 3


def test_default_path_in_export_dir(tmp_path):
    out = export_chart_csv([], export_dir=str(tmp_path))
    assert out.startswith(str(tmp_path))
    assert out.endswith(".csv")
