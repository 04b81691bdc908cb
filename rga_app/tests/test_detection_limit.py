import math

import numpy as np
import pytest

from rga_app.engine.detection_limit import (
    DEFAULT_LOD,
    DetectionLimit,
    calculate_dynamic_lod,
    check_peak_significance,
    nominal_currents,
    scan_detection_limit,
)
from rga_app.engine.plugin_api import RawScan, ScanMetadata
from rga_app.tests.rga_test_utils import BASELINE_PEAKS, FLOOR, make_raw_scan


def test_mass_21_is_preferred():
    limit = calculate_dynamic_lod({2: 1e-8, 5: 1e-12, 21: 2e-11})
    assert limit.method == "m21_standard"
    assert limit.confidence == "high"
    assert limit.used_masses == (21,)
    assert limit.mu == pytest.approx(2e-11)
    assert limit.sigma == pytest.approx(2e-12)
    assert limit.lod == pytest.approx(2.6e-11)


def test_low_masses_back_up_an_empty_mass_21():
    limit = calculate_dynamic_lod({2: 1e-8, 5: 1e-12, 9: 3e-12, 21: 0.0})
    assert limit.method == "low_mass_fallback"
    assert limit.confidence == "medium"
    assert limit.used_masses == (5, 9)
    assert limit.mu == pytest.approx(2e-12)
    assert limit.sigma == pytest.approx(1e-12)
    assert limit.lod == pytest.approx(5e-12)

    single = calculate_dynamic_lod({9: 4e-12})
    assert single.used_masses == (9,)
    assert single.sigma == pytest.approx(4e-13)


def test_quietest_tenth_is_the_last_resort():
    currents = {30 + idx: (idx + 1) * 1e-12 for idx in range(20)}
    currents[60] = 0.0
    limit = calculate_dynamic_lod(currents)
    assert limit.method == "percentile_fallback"
    assert limit.confidence == "low"
    assert limit.used_masses == (30, 31)
    assert limit.mu == pytest.approx(1.5e-12)
    assert limit.sigma == pytest.approx(0.5e-12)
    assert limit.lod == pytest.approx(3e-12)

    few = calculate_dynamic_lod({40: 5e-12, 44: 1e-10, 28: 2e-12})
    assert few.used_masses == (28,)
    assert few.lod == pytest.approx(2e-12 * 1.3)


@pytest.mark.parametrize("currents", [{}, {21: 0.0, 5: 0.0, 40: -1e-12}])
def test_no_signal_gives_default(currents):
    limit = calculate_dynamic_lod(currents)
    assert limit == DetectionLimit(DEFAULT_LOD, 0.0, 0.0, "percentile_fallback", "low")


def test_nominal_currents_keep_largest_sample():
    scan = RawScan(
        metadata=ScanMetadata(),
        mass=[1.9, 2.0, 2.1, 20.6, 21.2, np.nan],
        current=[1e-9, 5e-9, 2e-9, 3e-12, np.nan, 1.0],
    )
    assert nominal_currents(scan) == {2: 5e-9, 21: 3e-12}


def test_scan_detection_limit_on_synthetic_scan():
    limit = scan_detection_limit(make_raw_scan(BASELINE_PEAKS))
    assert limit.method == "m21_standard"
    assert limit.lod == pytest.approx(FLOOR * 1.3)


@pytest.mark.parametrize(
    "height, significant, confidence",
    [
        (6e-12, True, "very_high"),
        (3.5e-12, True, "high"),
        (2e-12, True, "medium"),
        (1e-12, True, "low"),
        (5e-13, False, "noise"),
    ],
)
def test_peak_significance(height, significant, confidence):
    limit = DetectionLimit(1e-12, 1e-12, 0.0, "m21_standard", "high", (21,))
    result = check_peak_significance(height, limit)
    assert result.is_significant is significant
    assert result.confidence == confidence
    assert result.factor == pytest.approx(height / 1e-12)


def test_significance_against_zero_lod():
    limit = DetectionLimit(0.0, 0.0, 0.0, "m21_standard", "high")
    assert math.isinf(check_peak_significance(1e-12, limit).factor)
