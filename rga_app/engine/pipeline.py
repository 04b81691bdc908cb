from __future__ import annotations

import logging
import multiprocessing
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import List, Optional, Sequence

from rga_app.engine import audit as audit_log
from rga_app.engine.comparison import compare_analyses
from rga_app.engine.detection_limit import scan_detection_limit
from rga_app.engine.gas_library import dominant_gases, rsf_corrected_fractions
from rga_app.engine.limits import check_limits
from rga_app.engine.normalization import normalize_scan
from rga_app.engine.peak_detection import extract_peaks
from rga_app.engine.plugin_api import AnalysisResult, ComparisonResult, NormalizedScan, RawScan
from rga_app.engine.qc import perform_quality_checks
from rga_app.engine.recipe_model import DEFAULT_PARAMS, Recipe, RecipeError, is_auto
from rga_app.io.quadera import parse_scan_text, read_scan

logger = logging.getLogger(__name__)

DEFAULT_NOISE_FLOOR = float(DEFAULT_PARAMS["peaks"]["noise_floor"])


def _default_parallel_workers() -> int:
    return max(1, min(4, (os.cpu_count() or 1)))


def _ensure_recipe(recipe: Recipe | None) -> Recipe:
    recipe = recipe or Recipe()
    errors = recipe.validate()
    if errors:
        raise RecipeError("; ".join(errors))
    return recipe


def _apply_point_ceiling(raw: RawScan, max_points: int, audit: List[str]) -> RawScan:
    if len(raw) <= max_points:
        return raw
    logger.warning(
        "Scan %s has %d points, truncating to %d",
        raw.metadata.source_file or "<text>",
        len(raw),
        max_points,
    )
    audit_log.log_step(audit, "Truncated scan from %d to %d points", len(raw), max_points)
    return RawScan(metadata=raw.metadata, mass=raw.mass[:max_points], current=raw.current[:max_points])


def _dynamic_noise_floor(raw: RawScan, normalized: NormalizedScan, audit: List[str]) -> float:
    """Scan LOD expressed on the normalised scale of ``normalized``."""

    limit = scan_detection_limit(raw)
    if normalized.reference_value > 0:
        floor = max(limit.lod - normalized.baseline, 0.0) / normalized.reference_value
    else:
        floor = DEFAULT_NOISE_FLOOR
    audit_log.log_step(
        audit,
        "Dynamic LOD %.3g (%s, %s confidence), noise floor %.3g",
        limit.lod,
        limit.method,
        limit.confidence,
        floor,
    )
    return floor


def analyze_scan(raw: RawScan, recipe: Recipe | None = None) -> AnalysisResult:
    """Run normalisation, peak extraction, limit and quality checks on a scan."""

    recipe = _ensure_recipe(recipe)
    params = recipe.resolved()
    audit = audit_log.start_audit(raw.metadata.source_file)
    if recipe.dev_mode:
        audit_log.log_step(audit, "Recipe: %s", params)

    raw = _apply_point_ceiling(raw, int(params["max_points"]), audit)
    audit_log.log_step(audit, "Parsed %d points (%s)", len(raw), raw.metadata.source_format)

    norm_cfg = params["normalization"]
    baseline_cfg = norm_cfg.get("baseline", {})
    normalized = normalize_scan(
        raw,
        reference_mass=float(norm_cfg["reference_mass"]),
        reference_window=float(norm_cfg["reference_window"]),
        baseline=str(baseline_cfg.get("method", "percentile")),
        percentile=float(baseline_cfg.get("percentile", 5.0)),
    )
    if normalized.valid:
        audit_log.log_step(
            audit,
            "Normalised to H2 reference %.4g (baseline %s = %.4g)",
            normalized.reference_value,
            normalized.baseline_method,
            normalized.baseline,
        )
    else:
        audit_log.log_step(
            audit,
            "Normalisation invalid: %s; fallback reference %s",
            normalized.reason,
            normalized.reference_source,
        )

    peak_cfg = params["peaks"]
    noise_floor = peak_cfg["noise_floor"]
    if is_auto(noise_floor):
        noise_floor = _dynamic_noise_floor(raw, normalized, audit)
    peaks = extract_peaks(
        normalized,
        noise_floor=float(noise_floor),
        window=float(peak_cfg["window"]),
        tolerance=float(peak_cfg["tolerance"]),
    )
    audit_log.log_step(audit, "Detected %d peaks", len(peaks))

    limit_cfg = params["limits"]
    limit_checks = check_limits(
        normalized,
        tolerance=float(limit_cfg["tolerance"]),
        mass_range=(float(limit_cfg["mass_min"]), float(limit_cfg["mass_max"])),
    )
    audit_log.log_step(
        audit,
        "Limit checks: %d masses, %d GSI failures, %d CERN failures",
        len(limit_checks),
        sum(1 for c in limit_checks if not c.gsi_passed),
        sum(1 for c in limit_checks if not c.cern_passed),
    )

    quality_checks = perform_quality_checks(peaks, extended=bool(params["quality"].get("extended")))
    audit_log.log_step(
        audit,
        "Quality checks: %d of %d passed",
        sum(1 for c in quality_checks if c.passed),
        len(quality_checks),
    )

    gas_cfg = params["dominant_gases"]
    top = int(gas_cfg.get("top", 5))
    if gas_cfg.get("rsf_correction"):
        breakdown = rsf_corrected_fractions(peaks, top=top)
    else:
        breakdown = dominant_gases(peaks, top=top)

    total_pressure = float(sum(p.integrated_current for p in peaks))
    return AnalysisResult(
        metadata=raw.metadata,
        normalized_data=normalized,
        peaks=tuple(peaks),
        limit_checks=tuple(limit_checks),
        quality_checks=tuple(quality_checks),
        total_pressure=total_pressure,
        dominant_gases=tuple(breakdown),
        audit=tuple(audit),
    )


def analyze_text(
    text: str,
    recipe: Recipe | None = None,
    *,
    source_name: Optional[str] = None,
) -> AnalysisResult:
    recipe = _ensure_recipe(recipe)
    order = str(recipe.section("parser").get("date_order", "MDY"))
    raw = parse_scan_text(text, source_name=source_name, date_order=order)
    return analyze_scan(raw, recipe)


def analyze_file(path: str | Path, recipe: Recipe | None = None) -> AnalysisResult:
    recipe = _ensure_recipe(recipe)
    order = str(recipe.section("parser").get("date_order", "MDY"))
    return analyze_scan(read_scan(path, date_order=order), recipe)


def analyze_files(
    paths: Sequence[str | Path],
    recipe: Recipe | None = None,
    *,
    parallel: bool = False,
    max_workers: Optional[int] = None,
) -> List[AnalysisResult]:
    """Analyse several files, optionally in a process pool.

    Results keep the order of ``paths``. A failure in any file is logged
    and re-raised.
    """

    recipe = _ensure_recipe(recipe)
    workers = max_workers or _default_parallel_workers()
    if not parallel or len(paths) < 2 or workers < 2:
        return [analyze_file(path, recipe) for path in paths]

    ctx = multiprocessing.get_context("spawn")
    results: List[Optional[AnalysisResult]] = [None for _ in paths]
    with ProcessPoolExecutor(mp_context=ctx, max_workers=workers) as executor:
        future_map = {
            executor.submit(analyze_file, path, recipe): idx
            for idx, path in enumerate(paths)
        }
        for future in as_completed(future_map):
            idx = future_map[future]
            try:
                results[idx] = future.result()
            except Exception:
                logger.exception("Analysis failed for %s", paths[idx])
                raise
    return [result for result in results if result is not None]


def compare_files(
    before_path: str | Path,
    after_path: str | Path,
    recipe: Recipe | None = None,
    *,
    parallel: bool = False,
) -> ComparisonResult:
    recipe = _ensure_recipe(recipe)
    before, after = analyze_files([before_path, after_path], recipe, parallel=parallel)
    cfg = recipe.section("comparison")
    return compare_analyses(
        before,
        after,
        tolerance=float(cfg.get("tolerance", 0.5)),
        change_threshold=float(cfg.get("change_threshold", 5.0)),
    )
