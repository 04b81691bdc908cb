from __future__ import annotations

import json
import math
import os
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd
from openpyxl import Workbook

from rga_app.engine.plugin_api import AnalysisResult, ComparisonResult


def _ensure_parent(path: Path) -> None:
    if not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)


def _clean_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        value = value.tolist()
    elif isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set)):
        return json.dumps([_clean_value(v) for v in value], ensure_ascii=False)
    if isinstance(value, dict):
        return json.dumps({str(k): _clean_value(v) for k, v in value.items()}, ensure_ascii=False)
    if isinstance(value, (Path, os.PathLike)):
        value = os.fspath(value)
    if isinstance(value, str):
        if value and value[0] in "=+-@":
            if not value.startswith("'"):
                return "'" + value
        return value
    return value


def _metadata_frame(analysis: AnalysisResult) -> pd.DataFrame:
    meta = analysis.metadata
    info = meta.filename_info
    rows = [
        ("source_file", meta.source_file),
        ("source_format", meta.source_format),
        ("task_name", meta.task_name),
        ("export_time", meta.export_time),
        ("start_time", meta.start_time),
        ("end_time", meta.end_time),
        ("first_mass", meta.first_mass),
        ("scan_width", meta.scan_width),
        ("chamber_name", meta.chamber_name),
        ("pressure", meta.pressure),
        ("cycles", meta.cycles),
        ("total_pressure", analysis.total_pressure),
        ("normalization_valid", analysis.normalization_valid),
        ("normalization_reason", analysis.normalized_data.reason),
        ("reference_source", analysis.normalized_data.reference_source),
        ("reference_value", analysis.normalized_data.reference_value),
        ("baseline", analysis.normalized_data.baseline),
        ("baseline_method", analysis.normalized_data.baseline_method),
    ]
    if info is not None:
        rows.extend((f"filename.{key}", value) for key, value in asdict(info).items())
    return pd.DataFrame(rows, columns=["key", "value"])


def analysis_tables(analysis: AnalysisResult) -> Dict[str, pd.DataFrame]:
    """Tabular views of an analysis, keyed by sheet name."""

    data = analysis.normalized_data
    tables = {
        "Metadata": _metadata_frame(analysis),
        "Data": pd.DataFrame(
            {
                "mass": data.mass,
                "current": data.current,
                "background_subtracted": data.background_subtracted,
                "normalized_to_h2": data.normalized_to_h2,
            }
        ),
        "Peaks": pd.DataFrame(
            [
                {
                    "mass": p.mass,
                    "gas": p.gas_identification,
                    "integrated_current": p.integrated_current,
                    "normalized_value": p.normalized_value,
                    "fragments": ", ".join(p.fragments),
                }
                for p in analysis.peaks
            ],
            columns=["mass", "gas", "integrated_current", "normalized_value", "fragments"],
        ),
        "Limits": pd.DataFrame(
            [asdict(c) for c in analysis.limit_checks],
            columns=[
                "mass",
                "measured_value",
                "gsi_limit",
                "cern_limit",
                "gsi_passed",
                "cern_passed",
                "reliable",
            ],
        ),
        "Quality": pd.DataFrame(
            [asdict(c) for c in analysis.quality_checks],
            columns=["name", "description", "formula", "passed", "measured_value", "threshold"],
        ),
        "Dominant_Gases": pd.DataFrame(
            [asdict(g) for g in analysis.dominant_gases],
            columns=["gas", "percentage"],
        ),
    }
    return tables


def comparison_tables(comparison: ComparisonResult) -> Dict[str, pd.DataFrame]:
    summary = asdict(comparison.summary)
    summary["overall_improvement"] = comparison.overall_improvement
    return {
        "Comparison": pd.DataFrame(
            [asdict(c) for c in comparison.peak_comparisons],
            columns=["mass", "gas_identification", "before_value", "after_value", "percentage_change", "status"],
        ),
        "Limit_Changes": pd.DataFrame(
            [asdict(c) for c in comparison.limit_improvements],
            columns=[
                "mass",
                "before_gsi_passed",
                "after_gsi_passed",
                "before_cern_passed",
                "after_cern_passed",
                "status",
            ],
        ),
        "Comparison_Summary": pd.DataFrame(list(summary.items()), columns=["key", "value"]),
    }


def _write_frame(ws, frame: pd.DataFrame) -> None:
    ws.append([str(col) for col in frame.columns])
    for row in frame.itertuples(index=False, name=None):
        ws.append([_clean_value(value) for value in row])


def write_workbook(
    analysis: AnalysisResult,
    out_path: str | Path,
    comparison: Optional[ComparisonResult] = None,
) -> str:
    workbook_path = Path(out_path)
    _ensure_parent(workbook_path)

    tables = analysis_tables(analysis)
    if comparison is not None:
        tables.update(comparison_tables(comparison))

    wb = Workbook()
    first = True
    for name, frame in tables.items():
        if first:
            ws = wb.active
            ws.title = name
            first = False
        else:
            ws = wb.create_sheet(name)
        _write_frame(ws, frame)

    ws_audit = wb.create_sheet("Audit_Log")
    ws_audit.append(["Index", "Entry"])
    for idx, entry in enumerate(analysis.audit, start=1):
        ws_audit.append([idx, _clean_value(entry)])

    wb.save(workbook_path)
    return str(workbook_path)
