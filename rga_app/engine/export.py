from __future__ import annotations

import csv
import io
from pathlib import Path

from rga_app.engine.plugin_api import AnalysisResult

CSV_HEADER = ("Mass [AMU]", "Ion Current [A]", "Normalized")


def format_csv(analysis: AnalysisResult) -> str:
    """Normalised data as CSV text.

    Mass has 2 decimals, current 6 significant digits in exponential form
    and the normalised value 6 decimals.
    """

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    data = analysis.normalized_data
    for mass, current, value in zip(data.mass, data.current, data.normalized_to_h2):
        writer.writerow([f"{mass:.2f}", f"{current:.5e}", f"{value:.6f}"])
    return buffer.getvalue()


def write_csv(analysis: AnalysisResult, path: str | Path) -> Path:
    csv_path = Path(path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    with csv_path.open("w", newline="", encoding="utf-8") as handle:
        handle.write(format_csv(analysis))
    return csv_path
