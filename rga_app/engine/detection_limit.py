"""Scan-specific limit of detection from quiet mass channels.

The LOD follows the 3σ rule, ``lod = mu + 3 * sigma``, over noise samples
taken in order of preference from m/z 21, from m/z 5 and 9, or from the
quietest tenth of the scan.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple

import numpy as np

from rga_app.engine.plugin_api import RawScan

logger = logging.getLogger(__name__)

PRIMARY_SAFE_MASS = 21
SECONDARY_SAFE_MASSES = (5, 9)
DEFAULT_LOD = 1e-10
PERCENTILE_FRACTION = 0.1
SINGLE_SAMPLE_SIGMA = 0.1


@dataclass(frozen=True)
class DetectionLimit:
    lod: float
    mu: float
    sigma: float
    method: str
    confidence: str
    used_masses: Tuple[int, ...] = ()


@dataclass(frozen=True)
class PeakSignificance:
    is_significant: bool
    factor: float
    confidence: str
    label: str


SIGNIFICANCE_LEVELS = (
    (5.0, "very_high", "Highly Significant"),
    (3.0, "high", "Significant"),
    (1.5, "medium", "Borderline"),
    (1.0, "low", "Weak Signal"),
)


def nominal_currents(scan: RawScan) -> Dict[int, float]:
    """Largest finite current per nominal (rounded) mass."""

    table: Dict[int, float] = {}
    for mass, current in zip(np.asarray(scan.mass, dtype=float), np.asarray(scan.current, dtype=float)):
        if not (np.isfinite(mass) and np.isfinite(current)):
            continue
        nominal = int(math.floor(mass + 0.5))
        if nominal not in table or current > table[nominal]:
            table[nominal] = float(current)
    return table


def _noise_samples(currents: Mapping[int, float]) -> Tuple[list, str, str, Tuple[int, ...]]:
    primary = currents.get(PRIMARY_SAFE_MASS, 0.0)
    if primary > 0:
        return [primary], "m21_standard", "high", (PRIMARY_SAFE_MASS,)

    backup = [m for m in SECONDARY_SAFE_MASSES if currents.get(m, 0.0) > 0]
    if backup:
        return [currents[m] for m in backup], "low_mass_fallback", "medium", tuple(backup)

    positive = sorted(((v, m) for m, v in currents.items() if v > 0), key=lambda item: item[0])
    count = max(1, math.ceil(len(positive) * PERCENTILE_FRACTION)) if positive else 0
    quiet = positive[:count]
    return [v for v, _ in quiet], "percentile_fallback", "low", tuple(m for _, m in quiet)


def calculate_dynamic_lod(currents: Mapping[int, float]) -> DetectionLimit:
    """LOD from a nominal mass → current table.

    A single noise sample gets ``sigma = 0.1 * mu``; several samples use the
    population standard deviation. Without any positive current the result
    is the conservative default of 1e-10.
    """

    values, method, confidence, used = _noise_samples(currents)
    if not values:
        logger.debug("No positive currents, using default LOD %g", DEFAULT_LOD)
        return DetectionLimit(DEFAULT_LOD, 0.0, 0.0, "percentile_fallback", "low")

    samples = np.asarray(values, dtype=float)
    mu = float(np.mean(samples))
    sigma = float(np.std(samples)) if samples.size > 1 else mu * SINGLE_SAMPLE_SIGMA
    lod = mu + 3.0 * sigma
    logger.debug("Dynamic LOD %g via %s from masses %s", lod, method, used)
    return DetectionLimit(lod, mu, sigma, method, confidence, used)


def scan_detection_limit(scan: RawScan) -> DetectionLimit:
    return calculate_dynamic_lod(nominal_currents(scan))


def check_peak_significance(height: float, limit: DetectionLimit) -> PeakSignificance:
    """Grade a peak height against the LOD (``factor = height / lod``)."""

    factor = height / limit.lod if limit.lod > 0 else math.inf
    for minimum, confidence, label in SIGNIFICANCE_LEVELS:
        if factor >= minimum:
            return PeakSignificance(True, factor, confidence, label)
    return PeakSignificance(False, factor, "noise", "Below LOD")
