from datetime import datetime

import pytest

from rga_app.engine.io_common import parse_locale_number, sniff_locale
from rga_app.io.quadera import (
    is_rga_file,
    parse_filename_info,
    parse_instrument_datetime,
    parse_scan_text,
    read_scan,
)

QUADERA_SAMPLE = "\n".join(
    [
        "Sourcefile\tKammer 3_2,7e-6mbar_1250v_23c_after bakeout_1h.sac",
        "Exporttime\t12.16.2025 13:00:00.000",
        "Start Time\t12.16.2025 12:58:16.824",
        "End Time\t12.16.2025 12:59:16.824",
        "Task Name\tScan Analog",
        "First Mass\t0,00",
        "Scan Width\t100",
        "Start Time\t12.17.2025 00:00:00",
        "Mass [amu]\tIon Current [A]",
        "1,00\t1,5E-010",
        "2,00\t8,6075E-009",
        "bad\trow",
        "3,00\t2,0E-011",
    ]
)

ALT_SAMPLE = "\n".join(
    [
        "ASCII SCAN ANALOG DATA: test_scan",
        "DATE: 01.15.2024",
        "TIME: 10:30:00",
        "First Mass   1",
        "Scan Width   50",
        "ScanData",
        "1.0  1.0E-10",
        "2.0  0.0",
        "3.0  2.0E-10",
        "ScanData",
        "1.0  5.0E-10",
    ]
)


def test_parse_locale_number_handles_comma_decimals():
    assert parse_locale_number("1,23") == pytest.approx(1.23)
    assert parse_locale_number("8,6075E-009") == pytest.approx(8.6075e-9)
    assert parse_locale_number("2.5e-3") == pytest.approx(2.5e-3)
    assert parse_locale_number("abc") is None
    assert parse_locale_number("") is None
    assert parse_locale_number(None) is None


def test_sniff_locale_prefers_tab_with_comma_decimals():
    sniffed = sniff_locale("1,00\t1,5E-010\n2,00\t8,6E-009")
    assert sniffed == {"decimal": ",", "delimiter": "\t"}


def test_quadera_rows_and_header_fields():
    scan = parse_scan_text(QUADERA_SAMPLE)

    assert len(scan) == 3
    assert scan.mass.tolist() == [1.0, 2.0, 3.0]
    assert scan.current[1] == pytest.approx(8.6075e-9)

    meta = scan.metadata
    assert meta.source_format == "quadera"
    assert meta.task_name == "Scan Analog"
    assert meta.first_mass == 0.0
    assert meta.scan_width == 100.0
    assert meta.start_time == datetime(2025, 12, 16, 12, 58, 16, 824000)
    assert meta.end_time == datetime(2025, 12, 16, 12, 59, 16, 824000)
    assert meta.chamber_name == "Kammer 3"
    assert meta.pressure == "2.7e-6 mbar"
    assert meta.cycles == 1


def test_raw_scan_arrays_are_read_only():
    scan = parse_scan_text(QUADERA_SAMPLE)
    with pytest.raises(ValueError):
        scan.mass[0] = 99.0


def test_quadera_stops_at_second_cycle():
    text = QUADERA_SAMPLE + "\nMass [amu]\tIon Current [A]\n4,00\t1,0E-010\n"
    scan = parse_scan_text(text)
    assert len(scan) == 3
    assert scan.metadata.cycles == 2


@pytest.mark.parametrize("newline", ["\r\n", "\r"])
def test_quadera_accepts_other_line_endings(newline):
    scan = parse_scan_text(QUADERA_SAMPLE.replace("\n", newline))
    assert len(scan) == 3
    assert scan.metadata.task_name == "Scan Analog"


def test_malformed_input_degrades_to_defaults():
    scan = parse_scan_text("this is not\nan instrument export")
    assert len(scan) == 0
    assert scan.metadata.task_name == "Scan"
    assert scan.metadata.first_mass == 0.0
    assert scan.metadata.scan_width == 100.0
    assert scan.metadata.start_time is None

    empty = parse_scan_text("")
    assert len(empty) == 0


def test_later_start_time_fills_unparseable_first():
    text = QUADERA_SAMPLE.replace("12.16.2025 12:58:16.824", "yesterday")
    scan = parse_scan_text(text)
    assert scan.metadata.start_time == datetime(2025, 12, 17, 0, 0, 0)
    assert len(scan) == 3


def test_unparseable_timestamp_leaves_field_unset():
    text = QUADERA_SAMPLE.replace("12.16.2025 12:58:16.824", "yesterday").replace(
        "12.17.2025 00:00:00", "today"
    )
    assert parse_scan_text(text).metadata.start_time is None


def test_alternative_ascii_format_uses_first_cycle_without_zero_rows():
    scan = parse_scan_text(ALT_SAMPLE)
    assert scan.metadata.source_format == "ascii_analog"
    assert scan.metadata.source_file == "test_scan"
    assert scan.mass.tolist() == [1.0, 3.0]
    assert scan.current.tolist() == pytest.approx([1e-10, 2e-10])
    assert scan.metadata.first_mass == 1.0
    assert scan.metadata.scan_width == 50.0
    assert scan.metadata.start_time == datetime(2024, 1, 15, 10, 30, 0)
    assert scan.metadata.cycles == 2


def test_instrument_datetime_field_order():
    assert parse_instrument_datetime("12.16.2025 12:58:16.824", "MDY") == datetime(
        2025, 12, 16, 12, 58, 16, 824000
    )
    assert parse_instrument_datetime("16.12.2025 12:58:16", "DMY") == datetime(2025, 12, 16, 12, 58, 16)
    assert parse_instrument_datetime("12.16.2025 12:58:16", "DMY") is None
    assert parse_instrument_datetime("not a date", "MDY") is None


def test_filename_info_extracts_all_fields():
    info = parse_filename_info("Kammer 3_2,7e-6mbar_1250v_23c_after bakeout_1h.sac")
    assert info.chamber_name == "Kammer 3"
    assert info.pressure == "2.7e-6 mbar"
    assert info.total_pressure_mbar == pytest.approx(2.7e-6)
    assert info.sem_voltage == 1250
    assert info.temperature_c == 23
    assert info.duration == "1h"
    assert info.system_state == "baked"
    assert info.description.startswith("Kammer 3")


@pytest.mark.parametrize(
    "name, state",
    [
        ("chamber_before bakeout_30min.txt", "unbaked"),
        ("kammer_nicht ausgeheizt.txt", "unbaked"),
        ("kammer_ausgeheizt.txt", "baked"),
        ("unbaked_kammer.txt", "unbaked"),
        ("plain_scan.txt", "unknown"),
    ],
)
def test_filename_system_state(name, state):
    assert parse_filename_info(name).system_state == state


def test_filename_without_metadata():
    info = parse_filename_info("scan.txt")
    assert info.chamber_name is None
    assert info.pressure is None
    assert info.sem_voltage is None
    assert info.duration is None


def test_read_scan_falls_back_to_latin1(tmp_path):
    path = tmp_path / "scan.txt"
    text = QUADERA_SAMPLE.replace("Scan Analog", "Messung ä")
    path.write_bytes(text.encode("latin-1"))

    scan = read_scan(path)
    assert len(scan) == 3
    assert scan.metadata.task_name == "Messung ä"


def test_read_scan_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_scan(tmp_path / "missing.txt")


def test_is_rga_file_sniffs_keywords(tmp_path):
    path = tmp_path / "scan.txt"
    path.write_text(QUADERA_SAMPLE, encoding="utf-8")
    other = tmp_path / "notes.txt"
    other.write_text("shopping list", encoding="utf-8")

    assert is_rga_file(path)
    assert not is_rga_file(other)
    assert not is_rga_file(tmp_path / "image.png")
    assert is_rga_file(tmp_path / "whatever.bin", sample=ALT_SAMPLE)


def test_out_of_range_filename_pressure_is_dropped():
    info = parse_filename_info("Kammer 1_2,1e400mbar.sac")
    assert info.pressure == "2.1e400 mbar"
    assert info.total_pressure_mbar is None

    text = "Sourcefile\tKammer 1_2,1e400mbar.sac\nMass [amu]\tIon Current [A]\n2,00\t1,0E-09\n"
    scan = parse_scan_text(text)
    assert scan.metadata.filename_info.total_pressure_mbar is None
    assert scan.metadata.filename_info.chamber_name == "Kammer 1"
    assert scan.current.tolist() == pytest.approx([1e-9])
