from __future__ import annotations

import logging
from typing import List

import numpy as np
from scipy.integrate import trapezoid
from scipy.signal import find_peaks

from rga_app.engine import gas_library
from rga_app.engine.plugin_api import NormalizedScan, Peak

logger = logging.getLogger(__name__)


def _resolve_step(mass: np.ndarray) -> float:
    diffs = np.diff(mass)
    step = float(np.nanmedian(np.abs(diffs))) if diffs.size else float("nan")
    if not np.isfinite(step) or step <= 0:
        step = 1.0
    return step


def find_local_maxima(
    normalized: NormalizedScan,
    noise_floor: float = 1e-4,
    min_separation: float = 0.5,
) -> np.ndarray:
    """Indices of local maxima of ``normalized_to_h2`` above ``noise_floor``.

    The series is zero-padded so the first and last points can qualify.
    Within ``min_separation`` amu only the tallest maximum is kept.
    """

    values = np.asarray(normalized.normalized_to_h2, dtype=float)
    if values.size == 0:
        return np.array([], dtype=int)
    values = np.where(np.isfinite(values), values, 0.0)
    padded = np.concatenate(([0.0], values, [0.0]))
    step = _resolve_step(np.asarray(normalized.mass, dtype=float))
    distance = max(1, int(round(min_separation / step)))
    floor = max(float(noise_floor), np.finfo(float).tiny)
    idxs, _ = find_peaks(padded, height=floor, distance=distance)
    return idxs - 1


def integrate_window(
    mass: np.ndarray,
    current: np.ndarray,
    center: float,
    half_width: float = 0.5,
) -> float:
    """Trapezoidal integral of ``current`` over ``center ± half_width``.

    A window holding a single sample is treated as a 1 amu wide bar.
    """

    mass = np.asarray(mass, dtype=float)
    current = np.asarray(current, dtype=float)
    mask = np.abs(mass - center) <= half_width
    if not np.any(mask):
        return 0.0
    xs = mass[mask]
    ys = np.where(np.isfinite(current[mask]), current[mask], 0.0)
    if xs.size == 1:
        return float(ys[0])
    order = np.argsort(xs, kind="stable")
    return float(trapezoid(ys[order], xs[order]))


def extract_peaks(
    normalized: NormalizedScan,
    *,
    noise_floor: float = 1e-4,
    window: float = 0.5,
    tolerance: float = 0.5,
) -> List[Peak]:
    idxs = find_local_maxima(normalized, noise_floor, min_separation=window)
    if idxs.size == 0:
        logger.debug("No peaks above noise floor %g", noise_floor)
        return []

    mass = np.asarray(normalized.mass, dtype=float)
    found = []
    for idx in idxs:
        center = float(mass[idx])
        integral = integrate_window(mass, normalized.current, center, window)
        assignment = gas_library.identify_mass(center, tolerance)
        found.append((center, integral, float(normalized.normalized_to_h2[idx]), assignment))

    detected = {a.mass for _, _, _, a in found if a is not None}
    peaks: List[Peak] = []
    for center, integral, value, assignment in found:
        if assignment is None:
            peaks.append(Peak(center, integral, value))
            continue
        peaks.append(
            Peak(
                mass=center,
                integrated_current=integral,
                normalized_value=value,
                gas_identification=assignment.label,
                fragments=gas_library.fragments_for(assignment, detected),
            )
        )
    logger.debug("Extracted %d peaks", len(peaks))
    return peaks
