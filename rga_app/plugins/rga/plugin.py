from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rga_app.engine import excel_writer, export
from rga_app.engine.comparison import compare_analyses, format_improvement
from rga_app.engine.pipeline import analyze_scan
from rga_app.engine.plugin_api import AnalysisPlugin, AnalysisResult, BatchResult, RawScan
from rga_app.engine.recipe_model import Recipe
from rga_app.io.quadera import is_rga_file, read_scan

logger = logging.getLogger(__name__)


def _recipe_from_params(recipe: Mapping[str, Any] | None) -> Recipe:
    params = {k: v for k, v in dict(recipe or {}).items() if k != "export"}
    return Recipe(params=params)


class RgaPlugin(AnalysisPlugin):
    id = "rga"
    label = "Residual Gas Analysis"
    xlabel = "Mass [amu]"

    def __init__(self, date_order: str = "MDY") -> None:
        self.date_order = date_order

    def detect(self, paths: Iterable[str]) -> bool:
        return any(is_rga_file(Path(p)) for p in paths)

    def load(self, paths: Iterable[str]) -> List[RawScan]:
        scans: List[RawScan] = []
        for path in paths:
            scan = read_scan(path, date_order=self.date_order)
            if len(scan) == 0:
                logger.warning("No data points found in %s", path)
            scans.append(scan)
        return scans

    def validate(self, scans: Sequence[RawScan], recipe: Dict[str, Any]) -> List[str]:
        errs = _recipe_from_params(recipe).validate()
        for scan in scans:
            name = scan.metadata.source_file or "<unnamed scan>"
            if len(scan) == 0:
                errs.append(f"{name}: scan contains no data points")
        return errs

    def analyze(
        self,
        scans: Sequence[RawScan],
        recipe: Dict[str, Any],
    ) -> Tuple[List[AnalysisResult], List[Dict[str, Any]]]:
        rcp = _recipe_from_params(recipe)
        analyses = [analyze_scan(scan, rcp) for scan in scans]
        qc_rows = [self._qc_row(analysis) for analysis in analyses]
        return analyses, qc_rows

    @staticmethod
    def _qc_row(analysis: AnalysisResult) -> Dict[str, Any]:
        meta = analysis.metadata
        return {
            "source_file": meta.source_file,
            "start_time": meta.start_time.isoformat() if meta.start_time else None,
            "points": len(analysis.normalized_data),
            "normalization_valid": analysis.normalization_valid,
            "normalization_reason": analysis.normalized_data.reason,
            "peaks": len(analysis.peaks),
            "gsi_failures": sum(1 for c in analysis.limit_checks if not c.gsi_passed),
            "cern_failures": sum(1 for c in analysis.limit_checks if not c.cern_passed),
            "quality_passed": sum(1 for c in analysis.quality_checks if c.passed),
            "quality_total": len(analysis.quality_checks),
            "total_pressure": analysis.total_pressure,
        }

    def export(
        self,
        analyses: List[AnalysisResult],
        qc: List[Dict[str, Any]],
        recipe: Dict[str, Any],
    ) -> BatchResult:
        export_cfg = dict((recipe or {}).get("export", {}) or {})
        audit: List[str] = []
        for analysis in analyses:
            audit.extend(analysis.audit)

        comparison = None
        if len(analyses) == 2:
            cfg = _recipe_from_params(recipe).section("comparison")
            ordered = list(analyses)
            if all(a.metadata.start_time for a in analyses):
                ordered.sort(key=lambda a: a.metadata.start_time)
            comparison = compare_analyses(
                ordered[0],
                ordered[1],
                tolerance=float(cfg.get("tolerance", 0.5)),
                change_threshold=float(cfg.get("change_threshold", 5.0)),
            )
            audit.append(
                f"Comparison: {comparison.summary.overall_grade}, "
                f"overall {format_improvement(comparison.overall_improvement)}"
            )

        exports: Dict[str, str] = {}
        csv_dir = export_cfg.get("csv_dir")
        if csv_dir:
            for idx, analysis in enumerate(analyses):
                stem = Path(analysis.metadata.source_file or f"scan_{idx + 1}").stem
                target = export.write_csv(analysis, Path(csv_dir) / f"{stem}.csv")
                exports[f"csv:{stem}"] = str(target)
                audit.append(f"CSV written to {target}")

        workbook = export_cfg.get("workbook") or export_cfg.get("path")
        if workbook and analyses:
            target = excel_writer.write_workbook(analyses[-1], workbook, comparison)
            exports["workbook"] = target
            audit.append(f"Workbook written to {target}")

        return BatchResult(
            analyses=list(analyses),
            qc_table=list(qc),
            comparison=comparison,
            exports=exports,
            audit=audit,
            report_text=self._build_text_report(analyses, comparison),
        )

    @staticmethod
    def _build_text_report(analyses: Sequence[AnalysisResult], comparison: Optional[Any]) -> str:
        lines = []
        for analysis in analyses:
            meta = analysis.metadata
            lines.append(f"{meta.source_file or 'Scan'} ({meta.task_name})")
            if not analysis.normalization_valid:
                lines.append(f"  normalisation invalid: {analysis.normalized_data.reason}")
            for gas in analysis.dominant_gases:
                lines.append(f"  {gas.gas}: {gas.percentage:.1f}%")
            failed = [c.name for c in analysis.quality_checks if not c.passed]
            lines.append(f"  quality: {'all passed' if not failed else ', '.join(failed)}")
        if comparison is not None:
            lines.append(
                f"Comparison grade {comparison.summary.overall_grade}, "
                f"improvement {format_improvement(comparison.overall_improvement)}"
            )
        return "\n".join(lines)
