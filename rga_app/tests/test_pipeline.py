import logging

import pytest

from rga_app.engine import pipeline
from rga_app.engine.audit import start_audit
from rga_app.engine.recipe_model import Recipe, RecipeError
from rga_app.tests.rga_test_utils import BASELINE_PEAKS, make_raw_scan, quadera_text


def _write_scan(tmp_path, name, peaks):
    path = tmp_path / name
    path.write_text(quadera_text(peaks, source=name), encoding="utf-8")
    return path


def test_analyze_text_end_to_end():
    result = pipeline.analyze_text(quadera_text(BASELINE_PEAKS))

    assert result.metadata.chamber_name == "Kammer 3"
    assert result.normalization_valid
    assert result.limits_reliable
    assert len(result.normalized_data) == 101
    assert result.normalized_data.normalized_to_h2[2] == 1.0

    masses = [p.mass for p in result.peaks]
    assert masses == [2.0, 14.0, 18.0, 28.0, 32.0, 40.0, 44.0]
    assert result.peaks[0].gas_identification == "H₂"
    assert result.total_pressure == pytest.approx(sum(p.integrated_current for p in result.peaks))
    assert result.total_pressure == pytest.approx(sum(BASELINE_PEAKS.values()), rel=1e-3)

    assert len(result.limit_checks) == 101
    assert len(result.quality_checks) == 5
    assert result.dominant_gases[0].gas == "H₂"
    assert len(result.dominant_gases) == 5
    assert result.top_peaks(2)[0].mass == 2.0

    assert result.audit[0].startswith("Analysis of ")
    assert any(entry.startswith("Detected 7 peaks") for entry in result.audit)


def test_audit_trail_is_reproducible(caplog):
    text = quadera_text(BASELINE_PEAKS)
    with caplog.at_level(logging.INFO, logger="rga_app.engine.audit"):
        first = pipeline.analyze_text(text)
        second = pipeline.analyze_text(text)

    assert first.audit == second.audit
    assert first.audit[0] == "Analysis of Kammer 3_2,7e-6mbar_1250v_23c_after bakeout_1h.sac"
    assert not any(entry.startswith(("Analysis start", "Platform")) for entry in first.audit)
    assert "Analysis start:" in caplog.text
    assert start_audit("scan.txt") == start_audit("scan.txt") == ["Analysis of scan.txt"]
    assert start_audit() == ["Analysis of unnamed scan"]


def test_auto_noise_floor_follows_scan_lod():
    noisy = {**BASELINE_PEAKS, 21: 5e-11}
    fixed = pipeline.analyze_scan(make_raw_scan(noisy))
    auto = pipeline.analyze_scan(make_raw_scan(noisy), Recipe(params={"peaks": {"noise_floor": "auto"}}))

    assert [p.mass for p in fixed.peaks] == [2.0, 14.0, 18.0, 21.0, 28.0, 32.0, 40.0, 44.0]
    assert [p.mass for p in auto.peaks] == [2.0, 18.0, 28.0, 44.0]
    assert any(entry.startswith("Dynamic LOD 6.5e-11 (m21_standard, high confidence)") for entry in auto.audit)
    assert not any(entry.startswith("Dynamic LOD") for entry in fixed.audit)


def test_auto_noise_floor_without_reference_uses_default():
    result = pipeline.analyze_scan(make_raw_scan({}), Recipe(params={"peaks": {"noise_floor": "auto"}}))
    assert result.peaks == ()
    assert any(entry.endswith("noise floor 0.0001") for entry in result.audit)

def test_analyze_scan_without_h2_is_flagged():
    peaks = {k: v for k, v in BASELINE_PEAKS.items() if k != 2}
    result = pipeline.analyze_scan(make_raw_scan(peaks))

    assert not result.normalization_valid
    assert not result.limits_reliable
    assert result.normalized_data.reference_source == "max"
    assert any("Normalisation invalid" in entry for entry in result.audit)


def test_point_ceiling_truncates_and_records():
    recipe = Recipe(params={"max_points": 50})
    result = pipeline.analyze_scan(make_raw_scan(BASELINE_PEAKS), recipe)

    assert len(result.normalized_data) == 50
    assert "Truncated scan from 101 to 50 points" in result.audit
    assert max(p.mass for p in result.peaks) == 44.0


def test_invalid_recipe_raises():
    with pytest.raises(RecipeError):
        pipeline.analyze_scan(make_raw_scan(BASELINE_PEAKS), Recipe(params={"peaks": {"noise_floor": -1}}))


def test_recipe_options_reach_stages():
    recipe = Recipe(
        params={
            "quality": {"extended": True},
            "dominant_gases": {"top": 2, "rsf_correction": True},
            "limits": {"mass_min": 0, "mass_max": 50},
            "dev_mode": True,
        }
    )
    result = pipeline.analyze_scan(make_raw_scan(BASELINE_PEAKS), recipe)

    assert len(result.quality_checks) == 13
    assert len(result.dominant_gases) == 2
    assert len(result.limit_checks) == 51
    assert any(entry.startswith("Recipe:") for entry in result.audit)


def test_analyze_files_keeps_order(tmp_path):
    first = _write_scan(tmp_path, "first.txt", BASELINE_PEAKS)
    second = _write_scan(tmp_path, "second.txt", {**BASELINE_PEAKS, 44: 5e-10})

    results = pipeline.analyze_files([first, second])
    assert [r.metadata.source_file for r in results] == ["first.txt", "second.txt"]
    assert pipeline.analyze_files([first], parallel=True)[0].metadata.source_file == "first.txt"


def test_analyze_file_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        pipeline.analyze_file(tmp_path / "missing.txt")


def test_compare_files_reports_water_reduction(tmp_path):
    before = _write_scan(tmp_path, "before.txt", BASELINE_PEAKS)
    after = _write_scan(tmp_path, "after.txt", {**BASELINE_PEAKS, 18: 1e-10})

    result = pipeline.compare_files(before, after)
    water = next(c for c in result.peak_comparisons if c.mass == 18.0)
    assert water.status == "improved"
    assert water.percentage_change == pytest.approx(-90.0, abs=0.1)
    assert result.overall_improvement > 0
    assert result.summary.worsened_peaks == 0
