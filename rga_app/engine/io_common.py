from __future__ import annotations

import re
from typing import Dict, Optional

_NUMBER_RE = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?$")


def sniff_locale(sample: str) -> Dict[str, str]:
    """Infer delimiter and decimal separator from a text sample.

    Instrument exports written on German-locale machines use decimal commas
    and tabs between columns, so a comma between digits is read as a
    decimal separator first and the delimiter is picked from what remains.
    """

    if not sample:
        return {"decimal": ".", "delimiter": "\t"}

    lines = [ln for ln in sample.splitlines() if ln.strip()]
    trimmed = "\n".join(lines)

    dot_matches = re.findall(r"\d\.\d", trimmed)
    comma_matches = re.findall(r"\d,\d", trimmed)
    decimal = "," if len(comma_matches) > len(dot_matches) else "."

    counts = {sep: trimmed.count(sep) for sep in ("\t", ";", ",")}
    if decimal == ",":
        counts[","] = max(0, counts[","] - len(comma_matches))
    delimiter = max(counts, key=counts.get)
    if counts[delimiter] == 0:
        delimiter = "\t"

    return {"decimal": decimal, "delimiter": delimiter}


def parse_locale_number(text: Optional[str]) -> Optional[float]:
    """Parse ``"1,23"`` or ``"8,6075E-012"`` style numbers.

    Returns ``None`` for anything that is not a single finite-looking number
    so callers can skip the value without catching exceptions.
    """

    if text is None:
        return None
    token = str(text).strip().replace(" ", "")
    if not token:
        return None
    if token.count(",") == 1 and "." not in token:
        token = token.replace(",", ".")
    if not _NUMBER_RE.match(token):
        return None
    try:
        return float(token)
    except ValueError:
        return None
