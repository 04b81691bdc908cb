from __future__ import annotations

import logging
from typing import Any

import numpy as np

from rga_app.engine.plugin_api import NormalizedScan, RawScan

logger = logging.getLogger(__name__)

BASELINE_METHODS = ("percentile", "minimum")


def compute_baseline(current: np.ndarray, method: str = "percentile", **params: Any) -> float:
    """Estimate the detector background of a scan.

    ``"percentile"`` uses ``params["percentile"]`` (default 5) of all
    currents, ``"minimum"`` the smallest current. Empty input gives 0.
    """

    values = np.asarray(current, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0
    method = (method or "percentile").lower()
    if method == "percentile":
        pct = float(params.get("percentile", 5.0))
        pct = min(max(pct, 0.0), 100.0)
        return float(np.percentile(values, pct))
    if method == "minimum":
        return float(np.min(values))
    raise ValueError(f"Unknown baseline method: {method}")


def _reference_index(mass: np.ndarray, values: np.ndarray, center: float, window: float) -> int | None:
    mask = np.abs(mass - center) <= window
    if not np.any(mask):
        return None
    candidates = np.flatnonzero(mask)
    return int(candidates[np.argmax(values[candidates])])


def normalize_scan(
    scan: RawScan,
    *,
    reference_mass: float = 2.0,
    reference_window: float = 0.5,
    baseline: str = "percentile",
    percentile: float = 5.0,
) -> NormalizedScan:
    mass = np.asarray(scan.mass, dtype=float)
    current = np.asarray(scan.current, dtype=float)

    if mass.size == 0:
        return NormalizedScan(
            mass=mass,
            current=current,
            background_subtracted=current,
            normalized_to_h2=current,
            baseline=0.0,
            baseline_method=baseline,
            reference_mass=reference_mass,
            reason="scan contains no data points",
        )

    level = compute_baseline(current, baseline, percentile=percentile)
    subtracted = np.clip(current - level, 0.0, None)
    subtracted = np.where(np.isfinite(subtracted), subtracted, 0.0)

    ref_idx = _reference_index(mass, subtracted, reference_mass, reference_window)
    ref_value = float(subtracted[ref_idx]) if ref_idx is not None else 0.0

    if ref_idx is not None and ref_value > 0:
        normalized = subtracted / ref_value
        normalized[ref_idx] = 1.0
        return NormalizedScan(
            mass=mass,
            current=current,
            background_subtracted=subtracted,
            normalized_to_h2=normalized,
            baseline=level,
            baseline_method=baseline,
            reference_mass=reference_mass,
            reference_value=ref_value,
            reference_index=ref_idx,
            reference_source="h2",
            valid=True,
        )

    if ref_idx is None:
        reason = f"no data point within {reference_window} amu of mass {reference_mass:g}"
    else:
        reason = f"reference peak at mass {reference_mass:g} is not above the baseline"
    logger.warning("H2 reference unavailable: %s", reason)

    max_idx = int(np.argmax(subtracted))
    max_value = float(subtracted[max_idx])
    if max_value > 0:
        normalized = subtracted / max_value
        normalized[max_idx] = 1.0
        return NormalizedScan(
            mass=mass,
            current=current,
            background_subtracted=subtracted,
            normalized_to_h2=normalized,
            baseline=level,
            baseline_method=baseline,
            reference_mass=reference_mass,
            reference_value=max_value,
            reference_index=max_idx,
            reference_source="max",
            valid=False,
            reason=reason,
        )

    return NormalizedScan(
        mass=mass,
        current=current,
        background_subtracted=subtracted,
        normalized_to_h2=np.zeros_like(subtracted),
        baseline=level,
        baseline_method=baseline,
        reference_mass=reference_mass,
        reference_source="none",
        valid=False,
        reason=reason,
    )
