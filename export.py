# export.py
"""CSV export of the chart series shown on the dashboard."""

import csv
import logging
import os
from datetime import datetime
from typing import Optional, Sequence

from config import EXPORT_DIR
from telemetry_reducer import ChartPoint

logger = logging.getLogger("USVConsole.Export")

CHART_FIELDS = ["timestamp", "ph", "temperature", "turbidity", "tds"]


def export_chart_csv(
    series: Sequence[ChartPoint],
    out_path: Optional[str] = None,
    export_dir: str = EXPORT_DIR,
) -> str:
    """Write the series to CSV (header + one row per point) and return the path"""
    if out_path is None:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_path = os.path.join(export_dir, f"usv_readings_{ts}.csv")

    directory = os.path.dirname(out_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(out_path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(CHART_FIELDS)
        for point in series:
            w.writerow([getattr(point, col) for col in CHART_FIELDS])

    logger.info(f"📤 Exported {len(series)} chart rows to {out_path}")
    return out_path
