"""Before/after comparison of two analyses, e.g. around a bakeout."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from rga_app.engine.plugin_api import (
    AnalysisResult,
    ComparisonResult,
    ComparisonSummary,
    LimitCheck,
    LimitImprovement,
    Peak,
    PeakComparison,
)

logger = logging.getLogger(__name__)

IMPROVED = "improved"
WORSENED = "worsened"
UNCHANGED = "unchanged"
REMOVED = "removed"
NEW = "new"

NEWLY_PASSING = "newly_passing"
NEWLY_FAILING = "newly_failing"


def change_status(percentage_change: float, change_threshold: float = 5.0) -> str:
    if percentage_change < -change_threshold:
        return IMPROVED
    if percentage_change > change_threshold:
        return WORSENED
    return UNCHANGED


def _percentage_change(before: float, after: float) -> float:
    if before > 0:
        return (after - before) / before * 100.0
    return 100.0 if after > 0 else 0.0


def _nearest(peaks: Sequence[Peak], mass: float, tolerance: float) -> Optional[Peak]:
    best = None
    best_distance = tolerance
    for peak in peaks:
        distance = abs(peak.mass - mass)
        if distance < best_distance:
            best = peak
            best_distance = distance
    return best


def compare_peaks(
    before_peaks: Sequence[Peak],
    after_peaks: Sequence[Peak],
    *,
    tolerance: float = 0.5,
    change_threshold: float = 5.0,
) -> List[PeakComparison]:
    comparisons: List[PeakComparison] = []
    for peak in before_peaks:
        match = _nearest(after_peaks, peak.mass, tolerance)
        if match is None:
            comparisons.append(
                PeakComparison(peak.mass, peak.gas_identification, peak.normalized_value, 0.0, -100.0, REMOVED)
            )
            continue
        change = _percentage_change(peak.normalized_value, match.normalized_value)
        comparisons.append(
            PeakComparison(
                mass=peak.mass,
                gas_identification=peak.gas_identification,
                before_value=peak.normalized_value,
                after_value=match.normalized_value,
                percentage_change=change,
                status=change_status(change, change_threshold),
            )
        )

    for peak in after_peaks:
        if _nearest(before_peaks, peak.mass, tolerance) is not None:
            continue
        comparisons.append(
            PeakComparison(peak.mass, peak.gas_identification, 0.0, peak.normalized_value, 100.0, NEW)
        )

    comparisons.sort(key=lambda c: c.mass)
    return comparisons


def compare_limits(
    before_checks: Sequence[LimitCheck],
    after_checks: Sequence[LimitCheck],
) -> List[LimitImprovement]:
    """Masses whose GSI or CERN verdict changed.

    A pass→fail flip on either limit marks the mass as newly failing, even
    when the other limit flipped to passing.
    """

    after_by_mass: Dict[int, LimitCheck] = {c.mass: c for c in after_checks}
    improvements: List[LimitImprovement] = []
    for before in before_checks:
        after = after_by_mass.get(before.mass)
        if after is None:
            continue
        flips = (
            (before.gsi_passed, after.gsi_passed),
            (before.cern_passed, after.cern_passed),
        )
        status = NEWLY_PASSING if any(now and not was for was, now in flips) else None
        if any(was and not now for was, now in flips):
            status = NEWLY_FAILING
        if status is None:
            continue
        improvements.append(
            LimitImprovement(
                mass=before.mass,
                before_gsi_passed=before.gsi_passed,
                after_gsi_passed=after.gsi_passed,
                before_cern_passed=before.cern_passed,
                after_cern_passed=after.cern_passed,
                status=status,
            )
        )
    return improvements


def overall_improvement(comparisons: Sequence[PeakComparison]) -> float:
    """Mean of ``-percentage_change`` weighted by the larger of the two values."""

    total_weight = 0.0
    weighted = 0.0
    for comp in comparisons:
        weight = max(comp.before_value, comp.after_value)
        total_weight += weight
        weighted += -comp.percentage_change * weight
    if not comparisons or total_weight <= 0:
        return 0.0
    return weighted / total_weight


def summarize(
    comparisons: Sequence[PeakComparison],
    improvements: Sequence[LimitImprovement],
) -> ComparisonSummary:
    improved = sum(1 for c in comparisons if c.status in (IMPROVED, REMOVED))
    worsened = sum(1 for c in comparisons if c.status in (WORSENED, NEW))
    unchanged = sum(1 for c in comparisons if c.status == UNCHANGED)
    resolved = sum(1 for i in improvements if i.status == NEWLY_PASSING)
    new_violations = sum(1 for i in improvements if i.status == NEWLY_FAILING)

    total = max(len(comparisons), 1)
    improved_ratio = improved / total
    worsened_ratio = worsened / total
    if worsened_ratio > 0.3 or new_violations > 2:
        grade = "poor"
    elif worsened_ratio > 0.1 or new_violations > 0:
        grade = "mixed"
    elif improved_ratio > 0.5 and resolved > 0:
        grade = "excellent"
    else:
        grade = "good"

    return ComparisonSummary(
        total_peaks_compared=len(comparisons),
        improved_peaks=improved,
        worsened_peaks=worsened,
        unchanged_peaks=unchanged,
        resolved_violations=resolved,
        new_violations=new_violations,
        overall_grade=grade,
    )


def compare_analyses(
    before: AnalysisResult,
    after: AnalysisResult,
    *,
    tolerance: float = 0.5,
    change_threshold: float = 5.0,
) -> ComparisonResult:
    peaks = compare_peaks(
        before.peaks,
        after.peaks,
        tolerance=tolerance,
        change_threshold=change_threshold,
    )
    limits = compare_limits(before.limit_checks, after.limit_checks)
    summary = summarize(peaks, limits)
    logger.debug(
        "Compared %d peaks: %d improved, %d worsened, grade %s",
        summary.total_peaks_compared,
        summary.improved_peaks,
        summary.worsened_peaks,
        summary.overall_grade,
    )
    return ComparisonResult(
        before_analysis=before,
        after_analysis=after,
        peak_comparisons=tuple(peaks),
        limit_improvements=tuple(limits),
        overall_improvement=overall_improvement(peaks),
        summary=summary,
    )


def format_improvement(percentage: float) -> str:
    sign = "+" if percentage > 0 else ""
    return f"{sign}{percentage:.1f}%"
