"""Gas-ratio sanity checks over peak integrals."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Sequence

from rga_app.engine.plugin_api import Peak, QualityCheck

logger = logging.getLogger(__name__)

LIGHT_HC_MASSES = (39, 41, 43, 45)
HEAVY_HC_MASSES = (69, 77)
DESY_HC_MASSES = (45, 55, 57, 69, 71, 77, 83, 85, 91)

CO2_TO_M28 = 0.11
H2O_TO_M16 = 0.015
O2_TO_M16 = 0.045
CH4_M15_OVER_M16 = 0.85
H2O_TO_M17 = 0.23


@dataclass
class SourceSplit:
    dominant: str
    first_fraction: float
    second_fraction: float
    explanation: str


def integrals_by_mass(peaks: Iterable[Peak]) -> Dict[int, float]:
    """Sum peak integrals per nominal mass."""

    table: Dict[int, float] = {}
    for peak in peaks:
        if not math.isfinite(peak.mass):
            continue
        nominal = int(math.floor(peak.mass + 0.5))
        table[nominal] = table.get(nominal, 0.0) + float(peak.integrated_current)
    return table


def apply_co2_correction(m28: float, m44: float) -> float:
    """Remove the CO⁺ fragment of CO₂ from the m/z 28 signal."""

    return max(0.0, m28 - m44 * CO2_TO_M28)


def distinguish_ch4_from_o(integrals: Mapping[int, float]) -> SourceSplit:
    """Split m/z 16 into CH₄⁺ (tracked by CH₃⁺ at 15) and O⁺ from O₂/H₂O.

    ``first_fraction`` is the CH₄ share, ``second_fraction`` the O⁺ share.
    """

    m15 = integrals.get(15, 0.0)
    m16 = integrals.get(16, 0.0)
    m18 = integrals.get(18, 0.0)
    m32 = integrals.get(32, 0.0)
    if m16 == 0:
        return SourceSplit("mixed", 0.0, 0.0, "No signal at m/z 16")

    o_part = m18 * H2O_TO_M16 + m32 * O2_TO_M16
    ch4_part = m15 / CH4_M15_OVER_M16
    total = o_part + ch4_part
    if total == 0:
        return SourceSplit("mixed", 0.5, 0.5, "No clear source identified")

    ch4_fraction = ch4_part / total
    o_fraction = o_part / total
    if ch4_fraction > 0.7:
        return SourceSplit("CH4", ch4_fraction, o_fraction, f"m/z 16 mainly CH₄ (CH₃⁺ at m/z 15 = {m15:.2e})")
    if o_fraction > 0.7:
        return SourceSplit("O+", ch4_fraction, o_fraction, "m/z 16 mainly O⁺ from O₂/H₂O")
    return SourceSplit(
        "mixed",
        ch4_fraction,
        o_fraction,
        f"m/z 16 is a mixture: ~{ch4_fraction * 100:.0f}% CH₄, ~{o_fraction * 100:.0f}% O⁺",
    )


def distinguish_nh3_from_h2o(integrals: Mapping[int, float]) -> SourceSplit:
    """Split m/z 17 into NH₃⁺ and the OH⁺ fragment of water.

    ``first_fraction`` is the NH₃ excess share of m/z 17, ``second_fraction``
    the share explained by OH⁺ (``m18 × 0.23``).
    """

    m16 = integrals.get(16, 0.0)
    m17 = integrals.get(17, 0.0)
    m18 = integrals.get(18, 0.0)
    expected_oh = m18 * H2O_TO_M17
    excess = max(0.0, m17 - expected_oh)
    if m17 == 0:
        return SourceSplit("H2O", 0.0, 0.0, "No signal at m/z 17")

    nh3_fraction = excess / m17
    oh_fraction = min(expected_oh / m17, 1.0)
    if excess > expected_oh * 0.3 and m16 / m17 > 0.5:
        return SourceSplit(
            "NH3", nh3_fraction, oh_fraction,
            f"NH₃ dominant: excess {excess:.2e}, m16/m17 = {m16 / m17:.2f}",
        )
    if excess < expected_oh * 0.1:
        return SourceSplit("H2O", nh3_fraction, oh_fraction, "m/z 17 fully explained by OH⁺ from H₂O")
    return SourceSplit(
        "mixed", nh3_fraction, oh_fraction,
        f"Mixture: ~{nh3_fraction * 100:.0f}% NH₃, rest OH⁺ from H₂O",
    )


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return math.inf
    return numerator / denominator


def _nh3_excess_check(m17: float, h2o: float) -> QualityCheck:
    # displayed as m17 / expected OH⁺; judged on the excess share of m17
    expected = h2o * H2O_TO_M17
    passed = m17 == 0 or h2o == 0 or (m17 - expected) / m17 < 0.3
    return QualityCheck(
        "NH₃ vs H₂O at m/z 17",
        "H₂O gives OH⁺ at m/z 17 (~23%); an excess above 30% of m/z 17 points to NH₃",
        "(Peak(17) - 0.23 × Peak(18)) / Peak(17) < 0.3",
        passed,
        _ratio(m17, expected),
        1.3,
    )


def _greater(name, description, formula, numerator, denominator, threshold) -> QualityCheck:
    value = _ratio(numerator, denominator)
    return QualityCheck(name, description, formula, math.isinf(value) or value > threshold, value, threshold)


def _less(name, description, formula, numerator, denominator, threshold, scale=1.0) -> QualityCheck:
    value = _ratio(numerator, denominator)
    if not math.isinf(value):
        value *= scale
    return QualityCheck(name, description, formula, math.isinf(value) or value < threshold, value, threshold)


def _within(name, description, formula, numerator, denominator, low, high, threshold) -> QualityCheck:
    value = _ratio(numerator, denominator)
    passed = math.isinf(value) or low <= value <= high
    return QualityCheck(name, description, formula, passed, value, threshold)


def _base_checks(m: Mapping[int, float], total: float) -> List[QualityCheck]:
    light = sum(m.get(x, 0.0) for x in LIGHT_HC_MASSES)
    heavy = sum(m.get(x, 0.0) for x in HEAVY_HC_MASSES)
    return [
        _greater(
            "H₂/H₂O ratio",
            "Hydrogen must be at least 5× larger than water",
            "H₂ / H₂O > 5",
            m.get(2, 0.0), m.get(18, 0.0), 5.0,
        ),
        _greater(
            "N₂/O₂ ratio (air leak)",
            "N₂/CO must be at least 4× larger than O₂, otherwise an air leak is likely",
            "N₂/CO / O₂ > 4",
            m.get(28, 0.0), m.get(32, 0.0), 4.0,
        ),
        _less(
            "Fragment consistency",
            "N⁺ fragment (m/z 14) should be smaller than O⁺ fragment (m/z 16)",
            "Peak(14) / Peak(16) < 1",
            m.get(14, 0.0), m.get(16, 0.0), 1.0,
        ),
        _less(
            "Light hydrocarbons",
            "Sum of masses 39, 41, 43, 45 below 0.1% of the total signal",
            "Σ(39,41,43,45) / total × 100 < 0.1",
            light, total, 0.1, scale=100.0,
        ),
        _less(
            "Heavy hydrocarbons (oil)",
            "Sum of masses 69, 77 below 0.05% of the total signal",
            "Σ(69,77) / total × 100 < 0.05",
            heavy, total, 0.05, scale=100.0,
        ),
    ]


def _extended_checks(m: Mapping[int, float], total: float) -> List[QualityCheck]:
    h2o = m.get(18, 0.0)
    n2_co = m.get(28, 0.0)
    hc_sum = sum(m.get(x, 0.0) for x in DESY_HC_MASSES)
    checks = [
        _greater(
            "Bakeout success",
            "After a successful bakeout H₂ should dominate over H₂O",
            "Peak(2) / Peak(18) > 1",
            m.get(2, 0.0), h2o, 1.0,
        ),
        _within(
            "N₂ vs CO",
            "m/z 14 relative to m/z 28 tells whether 28 is mainly N₂ (≈0.07) or CO",
            "0.05 ≤ Peak(14) / Peak(28) ≤ 0.15",
            m.get(14, 0.0), n2_co, 0.05, 0.15, 0.07,
        ),
        _within(
            "Ar double ionisation",
            "Ar²⁺ at m/z 20 should be 8-20% of Ar⁺ at m/z 40",
            "0.08 ≤ Peak(20) / Peak(40) ≤ 0.20",
            m.get(20, 0.0), m.get(40, 0.0), 0.08, 0.20, 0.12,
        ),
        _less(
            "HC-free (DESY)",
            "Hydrocarbons between m/z 45 and 100 below 0.1% of the total signal",
            "Σ(45-100) / total × 100 < 0.1",
            hc_sum, total, 0.1, scale=100.0,
        ),
        QualityCheck(
            "CO₂ correction for m/z 28",
            "CO₂ contributes about 11% to m/z 28; the corrected value is the true N₂ + CO signal",
            "m28_corr = m28 - 0.11 × m44",
            True,
            apply_co2_correction(n2_co, m.get(44, 0.0)),
            n2_co,
        ),
        _less(
            "CH₄ vs O⁺ at m/z 16",
            "CH₃⁺ at m/z 15 is a clean CH₄ marker; O⁺ comes from O₂ and H₂O",
            "Peak(15) / Peak(16) < 0.3",
            m.get(15, 0.0), m.get(16, 0.0), 0.3,
        ),
        _nh3_excess_check(m.get(17, 0.0), h2o),
        _less(
            "CO contribution (C⁺ fragment)",
            "C⁺ at m/z 12 indicates CO; CO cracks to C⁺ at about 4.5%",
            "Peak(12) / Peak(28) < 0.06",
            m.get(12, 0.0), n2_co, 0.06,
        ),
    ]
    return checks


def perform_quality_checks(peaks: Sequence[Peak], *, extended: bool = False) -> List[QualityCheck]:
    """Run the ratio checks.

    A zero denominator yields ``measured_value = inf`` and a passed check.
    """

    integrals = integrals_by_mass(peaks)
    total = float(sum(p.integrated_current for p in peaks))
    checks = _base_checks(integrals, total)
    if extended:
        checks.extend(_extended_checks(integrals, total))
    failed = [c.name for c in checks if not c.passed]
    if failed:
        logger.info("Quality checks failed: %s", ", ".join(failed))
    return checks
