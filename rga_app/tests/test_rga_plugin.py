from openpyxl import load_workbook

from rga_app.plugins.rga.plugin import RgaPlugin
from rga_app.tests.rga_test_utils import BASELINE_PEAKS, quadera_text


def _write(tmp_path, name, peaks, start):
    path = tmp_path / name
    path.write_text(quadera_text(peaks, source=name, start=start), encoding="utf-8")
    return str(path)


def test_detect_and_load(tmp_path):
    scan = _write(tmp_path, "scan.txt", BASELINE_PEAKS, "12.16.2025 12:58:16.824")
    notes = tmp_path / "notes.txt"
    notes.write_text("nothing here", encoding="utf-8")
    plugin = RgaPlugin()

    assert plugin.detect([scan])
    assert not plugin.detect([str(notes)])
    scans = plugin.load([scan])
    assert len(scans[0]) == 101


def test_validate_reports_recipe_and_empty_scans(tmp_path):
    empty = tmp_path / "empty.txt"
    empty.write_text("Sourcefile\tempty.txt\nMass [amu]\tIon Current [A]\n", encoding="utf-8")
    plugin = RgaPlugin()
    scans = plugin.load([str(empty)])

    errs = plugin.validate(scans, {"peaks": {"window": 0}})
    assert "Peak window must be positive" in errs
    assert "empty.txt: scan contains no data points" in errs


def test_analyze_and_export_with_comparison(tmp_path):
    after = _write(tmp_path, "after.txt", {**BASELINE_PEAKS, 18: 1e-10}, "12.17.2025 09:00:00.000")
    before = _write(tmp_path, "before.txt", BASELINE_PEAKS, "12.16.2025 09:00:00.000")
    plugin = RgaPlugin()
    recipe = {
        "export": {"csv_dir": str(tmp_path / "csv"), "workbook": str(tmp_path / "report.xlsx")},
    }

    scans = plugin.load([after, before])
    assert plugin.validate(scans, recipe) == []
    analyses, qc = plugin.analyze(scans, recipe)
    assert [row["source_file"] for row in qc] == ["after.txt", "before.txt"]
    assert qc[0]["normalization_valid"] is True
    assert qc[0]["quality_total"] == 5

    result = plugin.export(analyses, qc, recipe)
    assert result.comparison is not None
    assert result.comparison.before_analysis.metadata.source_file == "before.txt"
    water = next(c for c in result.comparison.peak_comparisons if c.mass == 18.0)
    assert water.status == "improved"

    assert (tmp_path / "csv" / "after.csv").exists()
    assert (tmp_path / "csv" / "before.csv").exists()
    assert "Comparison" in load_workbook(result.exports["workbook"]).sheetnames
    assert any(entry.startswith("Comparison:") for entry in result.audit)
    assert "Comparison grade" in result.report_text


def test_export_single_scan_without_outputs(tmp_path):
    path = _write(tmp_path, "scan.txt", BASELINE_PEAKS, "12.16.2025 12:58:16.824")
    plugin = RgaPlugin()
    analyses, qc = plugin.analyze(plugin.load([path]), {})
    result = plugin.export(analyses, qc, {})

    assert result.comparison is None
    assert result.exports == {}
    assert result.report_text.startswith("scan.txt (Scan Analog)")
