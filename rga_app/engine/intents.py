"""Commands a front end hands to the core.

Each intent is a plain value; :func:`dispatch` runs the matching pure
computation and returns its result. The caller owns any state it keeps.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from rga_app.engine import excel_writer, export
from rga_app.engine.comparison import compare_analyses
from rga_app.engine.pipeline import analyze_file, analyze_text
from rga_app.engine.plugin_api import AnalysisResult, ComparisonResult
from rga_app.engine.recipe_model import Recipe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadScan:
    path: Optional[str] = None
    text: Optional[str] = None
    source_name: Optional[str] = None


@dataclass(frozen=True)
class CompareScans:
    before: AnalysisResult
    after: AnalysisResult


@dataclass(frozen=True)
class ExportAnalysis:
    analysis: AnalysisResult
    path: str
    format: str = "csv"
    comparison: Optional[ComparisonResult] = None


Intent = Union[LoadScan, CompareScans, ExportAnalysis]


def dispatch(intent: Intent, recipe: Recipe | None = None):
    recipe = recipe or Recipe()
    if isinstance(intent, LoadScan):
        if intent.text is not None:
            return analyze_text(intent.text, recipe, source_name=intent.source_name)
        if intent.path is None:
            raise ValueError("LoadScan needs a path or text")
        return analyze_file(intent.path, recipe)
    if isinstance(intent, CompareScans):
        cfg = recipe.section("comparison")
        return compare_analyses(
            intent.before,
            intent.after,
            tolerance=float(cfg.get("tolerance", 0.5)),
            change_threshold=float(cfg.get("change_threshold", 5.0)),
        )
    if isinstance(intent, ExportAnalysis):
        fmt = intent.format.lower()
        if fmt == "csv":
            return str(export.write_csv(intent.analysis, intent.path))
        if fmt in ("xlsx", "excel"):
            return excel_writer.write_workbook(intent.analysis, Path(intent.path), intent.comparison)
        raise ValueError(f"Unsupported export format: {intent.format}")
    raise TypeError(f"Unknown intent: {type(intent).__name__}")
