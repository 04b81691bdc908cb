"""Readers for RGA scan exports.

Two text layouts are understood:

* the Pfeiffer Quadera ASCII export (``key<TAB>value`` header followed by a
  ``Mass [amu]`` table), and
* the older "ASCII SCAN ANALOG DATA" export with a ``ScanData`` marker.

Both readers only consume the first scan cycle. They never raise for bad
content: unparseable rows are skipped and unreadable header fields keep
their defaults.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rga_app.engine.io_common import parse_locale_number, sniff_locale
from rga_app.engine.plugin_api import FilenameInfo, RawScan, ScanMetadata

logger = logging.getLogger(__name__)

ALT_FORMAT_MARKER = "ASCII SCAN ANALOG DATA:"
DATA_HEADER = "Mass [amu]"

HEADER_KEYS: Tuple[Tuple[str, str], ...] = (
    ("Sourcefile", "source_file"),
    ("Exporttime", "export_time"),
    ("Start Time", "start_time"),
    ("End Time", "end_time"),
    ("Task Name", "task_name"),
    ("First Mass", "first_mass"),
    ("Scan Width", "scan_width"),
)

DATETIME_FIELDS = {"export_time", "start_time", "end_time"}
NUMERIC_FIELDS = {"first_mass", "scan_width"}

RGA_KEYWORDS = (
    "quadera",
    "sourcefile",
    "mass [amu]",
    "ascii scan analog data",
    "first mass",
    "scan width",
)

_DATETIME_RE = re.compile(
    r"(\d{1,4})\.(\d{1,2})\.(\d{1,4})\s+(\d{1,2}):(\d{1,2}):(\d{1,2})(?:[.,](\d+))?"
)
_CHAMBER_RE = re.compile(r"Kammer[\s_]*(\d+)", re.IGNORECASE)
_PRESSURE_RE = re.compile(r"(\d+[,.]?\d*)\s*[eE]\s*(-?\d+)\s*mbar", re.IGNORECASE)
_VOLTAGE_RE = re.compile(r"(\d{3,4})\s*[vV](?![a-zA-Z])")
_TEMPERATURE_RE = re.compile(r"(\d{2,3})\s*[cC](?![a-zA-Z])")
_DURATION_RE = re.compile(r"(\d+)\s*(min|h)(?![a-zA-Z])", re.IGNORECASE)

SYSTEM_STATE_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"nicht\s*ausgeheizt", re.IGNORECASE), "unbaked"),
    (re.compile(r"before\s*bake\s*out", re.IGNORECASE), "unbaked"),
    (re.compile(r"pre[_\-\s]*bake", re.IGNORECASE), "unbaked"),
    (re.compile(r"unbaked", re.IGNORECASE), "unbaked"),
    (re.compile(r"vor[_\s]*aus\s*heizen", re.IGNORECASE), "unbaked"),
    (re.compile(r"vor[_\s]*bake\s*out", re.IGNORECASE), "unbaked"),
    (re.compile(r"after\s*bake\s*out", re.IGNORECASE), "baked"),
    (re.compile(r"post[_\-\s]*bake", re.IGNORECASE), "baked"),
    (re.compile(r"nach[_\s]*aus\s*heizen", re.IGNORECASE), "baked"),
    (re.compile(r"nach[_\s]*bake\s*out", re.IGNORECASE), "baked"),
    (re.compile(r"ausgeheizt", re.IGNORECASE), "baked"),
    (re.compile(r"baked", re.IGNORECASE), "baked"),
)


def is_rga_file(path: Path | str, sample: Optional[str] = None) -> bool:
    """Best-effort heuristic to identify RGA scan exports."""

    path = Path(path)
    if path.suffix.lower() == ".asc":
        return True
    if sample is None:
        if path.suffix.lower() not in {".txt", ".dat", ".csv"}:
            return False
        try:
            sample = _decode(path.read_bytes()[:4000])
        except OSError:
            sample = ""
    lowered = (sample or "").lower()
    return any(keyword in lowered for keyword in RGA_KEYWORDS)


def read_scan(path: Path | str, *, date_order: str = "MDY") -> RawScan:
    """Read a scan file from disk.

    A missing file raises ``FileNotFoundError``; anything wrong with the
    file's content degrades to defaults instead.
    """

    path = Path(path)
    text = _decode(path.read_bytes())
    return parse_scan_text(text, source_name=path.name, date_order=date_order)


def parse_scan_text(
    text: str,
    *,
    source_name: Optional[str] = None,
    date_order: str = "MDY",
) -> RawScan:
    content = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    if content.lstrip().startswith(ALT_FORMAT_MARKER):
        fields, rows, cycles = _parse_alternative(content, date_order)
        source_format = "ascii_analog"
    else:
        fields, rows, cycles = _parse_quadera(content, date_order)
        source_format = "quadera"

    masses, currents, skipped = _parse_rows(rows, drop_zero=source_format == "ascii_analog")
    if skipped:
        logger.debug("Skipped %d unparseable data rows", skipped)

    source_file = fields.get("source_file") or source_name or ""
    info = parse_filename_info(source_file) if source_file else None
    metadata = ScanMetadata(
        source_file=source_file,
        export_time=fields.get("export_time"),
        start_time=fields.get("start_time"),
        end_time=fields.get("end_time"),
        task_name=fields.get("task_name") or "Scan",
        first_mass=fields.get("first_mass") or 0.0,
        scan_width=fields.get("scan_width") or 100.0,
        chamber_name=info.chamber_name if info else None,
        pressure=info.pressure if info else None,
        source_format=source_format,
        cycles=cycles,
        filename_info=info,
    )
    return RawScan(metadata=metadata, mass=masses, current=currents)


def _parse_quadera(content: str, date_order: str) -> Tuple[Dict[str, object], List[str], int]:
    fields: Dict[str, object] = {}
    rows: List[str] = []
    cycles = 0
    in_data = False

    for line in content.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if in_data:
            if stripped.startswith(DATA_HEADER) or stripped.startswith("First Mass"):
                cycles += 1
                break
            rows.append(stripped)
            continue
        if stripped.startswith(DATA_HEADER):
            in_data = True
            cycles += 1
            continue
        for prefix, key in HEADER_KEYS:
            if not stripped.startswith(prefix):
                continue
            if key == "start_time" and fields.get("start_time") is not None:
                break
            value = stripped.split("\t", 1)[1].strip() if "\t" in stripped else ""
            fields[key] = _convert_header_value(key, value, date_order)
            break

    return fields, rows, cycles


def _parse_alternative(content: str, date_order: str) -> Tuple[Dict[str, object], List[str], int]:
    fields: Dict[str, object] = {}
    rows: List[str] = []
    cycles = 0
    in_data = False
    lines = content.split("\n")

    time_text = None
    for line in lines:
        match = re.search(r"TIME:\s*(\d+:\d+:\d+)", line)
        if match:
            time_text = match.group(1)
            break

    for line in lines:
        stripped = line.strip()
        if not stripped:
            continue
        if in_data:
            if stripped.startswith("ScanData"):
                cycles += 1
                break
            rows.append(stripped)
            continue
        if stripped.startswith(ALT_FORMAT_MARKER):
            fields["source_file"] = stripped[len(ALT_FORMAT_MARKER):].strip()
        elif stripped.startswith("DATE:"):
            match = re.search(r"DATE:\s*(\d+\.\d+\.\d+)", stripped)
            if match and time_text:
                fields["start_time"] = parse_instrument_datetime(
                    f"{match.group(1)} {time_text}", date_order
                )
        elif stripped.startswith("First Mass"):
            match = re.search(r"First Mass\s+([\d.,]+)", stripped)
            if match:
                fields["first_mass"] = parse_locale_number(match.group(1))
        elif stripped.startswith("Scan Width"):
            match = re.search(r"Scan Width\s+([\d.,]+)", stripped)
            if match:
                fields["scan_width"] = parse_locale_number(match.group(1))
        elif stripped.startswith("ScanData"):
            in_data = True
            cycles += 1

    return fields, rows, cycles


def _convert_header_value(key: str, value: str, date_order: str) -> object:
    if key in DATETIME_FIELDS:
        parsed = parse_instrument_datetime(value, date_order)
        if parsed is None and value:
            logger.warning("Unrecognised timestamp %r for %s", value, key)
        return parsed
    if key in NUMERIC_FIELDS:
        parsed_number = parse_locale_number(value)
        if parsed_number is None and value:
            logger.warning("Unrecognised number %r for %s", value, key)
        return parsed_number
    return value


def _parse_rows(rows: List[str], *, drop_zero: bool) -> Tuple[List[float], List[float], int]:
    masses: List[float] = []
    currents: List[float] = []
    skipped = 0
    delimiter = sniff_locale("\n".join(rows[:50]))["delimiter"] if rows else "\t"

    for row in rows:
        parts = [p for p in row.split(delimiter) if p.strip()]
        if len(parts) < 2:
            parts = row.split()
        if len(parts) < 2:
            skipped += 1
            continue
        mass = parse_locale_number(parts[0])
        current = parse_locale_number(parts[1])
        if mass is None or current is None:
            skipped += 1
            continue
        if drop_zero and current == 0:
            continue
        masses.append(mass)
        currents.append(current)

    return masses, currents, skipped


def parse_instrument_datetime(text: Optional[str], date_order: str = "MDY") -> Optional[datetime]:
    """Parse ``"12.16.2025 12:58:16.824"`` style timestamps.

    ``date_order`` names the order of the three dotted fields (``"MDY"``,
    ``"DMY"`` or ``"YMD"``). A match that does not form a real calendar
    date returns ``None``; the other order is never tried.
    """

    if not text:
        return None
    match = _DATETIME_RE.search(text)
    if not match:
        return None
    first, second, third, hour, minute, second_of_minute, fraction = match.groups()
    order = (date_order or "MDY").upper()
    parts = dict(zip(order, (int(first), int(second), int(third))))
    if set(parts) != {"M", "D", "Y"}:
        logger.warning("Unsupported date order %r", date_order)
        return None
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    try:
        return datetime(
            parts["Y"], parts["M"], parts["D"],
            int(hour), int(minute), int(second_of_minute), micro,
        )
    except ValueError:
        return None


def parse_filename_info(filename: str) -> FilenameInfo:
    name = Path(filename.replace("\\", "/")).name if filename else ""
    chamber = None
    match = _CHAMBER_RE.search(name)
    if match:
        chamber = f"Kammer {match.group(1)}"

    pressure_text = None
    total_pressure = None
    match = _PRESSURE_RE.search(name)
    if match:
        mantissa = match.group(1).replace(",", ".")
        pressure_text = f"{mantissa}e{match.group(2)} mbar"
        value = float(f"{mantissa}e{match.group(2)}")
        if math.isfinite(value):
            total_pressure = value

    voltage = None
    match = _VOLTAGE_RE.search(name)
    if match:
        voltage = int(match.group(1))

    temperature = None
    match = _TEMPERATURE_RE.search(name)
    if match:
        temperature = int(match.group(1))

    duration = None
    match = _DURATION_RE.search(name)
    if match:
        duration = f"{match.group(1)}{match.group(2).lower()}"

    state = "unknown"
    for pattern, label in SYSTEM_STATE_PATTERNS:
        if pattern.search(name):
            state = label
            break

    description = None
    match = re.match(r"^(.+?)_\d+(?:h|min)", name, re.IGNORECASE)
    if match:
        description = match.group(1).strip()

    return FilenameInfo(
        chamber_name=chamber,
        pressure=pressure_text,
        total_pressure_mbar=total_pressure,
        sem_voltage=voltage,
        temperature_c=temperature,
        duration=duration,
        system_state=state,
        description=description,
    )


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1")
