import pytest

from rga_app.engine.intents import CompareScans, ExportAnalysis, LoadScan, dispatch
from rga_app.engine.plugin_api import AnalysisResult, ComparisonResult
from rga_app.tests.rga_test_utils import BASELINE_PEAKS, quadera_text


def test_load_scan_from_text_and_path(tmp_path):
    text = quadera_text(BASELINE_PEAKS)
    from_text = dispatch(LoadScan(text=text))
    assert isinstance(from_text, AnalysisResult)
    assert from_text.normalization_valid

    path = tmp_path / "scan.txt"
    path.write_text(text, encoding="utf-8")
    from_path = dispatch(LoadScan(path=str(path)))
    assert len(from_path.peaks) == len(from_text.peaks)


def test_load_scan_requires_input():
    with pytest.raises(ValueError):
        dispatch(LoadScan())


def test_compare_scans():
    before = dispatch(LoadScan(text=quadera_text(BASELINE_PEAKS)))
    after = dispatch(LoadScan(text=quadera_text({**BASELINE_PEAKS, 44: 1e-9})))
    result = dispatch(CompareScans(before, after))
    assert isinstance(result, ComparisonResult)
    co2 = next(c for c in result.peak_comparisons if c.mass == 44.0)
    assert co2.status == "worsened"


def test_export_formats(tmp_path):
    analysis = dispatch(LoadScan(text=quadera_text(BASELINE_PEAKS)))

    csv_path = dispatch(ExportAnalysis(analysis, str(tmp_path / "scan.csv")))
    assert csv_path.endswith("scan.csv")
    xlsx_path = dispatch(ExportAnalysis(analysis, str(tmp_path / "scan.xlsx"), format="xlsx"))
    assert (tmp_path / "scan.xlsx").exists()
    assert xlsx_path == str(tmp_path / "scan.xlsx")

    with pytest.raises(ValueError):
        dispatch(ExportAnalysis(analysis, str(tmp_path / "scan.pdf"), format="pdf"))


def test_unknown_intent():
    with pytest.raises(TypeError):
        dispatch("load")
