from __future__ import annotations

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from rga_app.engine.normalization import BASELINE_METHODS

PRESET_DIR = Path(__file__).resolve().parent.parent / "config" / "presets"

DEFAULT_PARAMS: Dict[str, Any] = {
    "normalization": {
        "reference_mass": 2.0,
        "reference_window": 0.5,
        "baseline": {"method": "percentile", "percentile": 5.0},
    },
    "peaks": {"noise_floor": 1.0e-4, "window": 0.5, "tolerance": 0.5},
    "limits": {"tolerance": 0.1, "mass_min": 0, "mass_max": 100},
    "quality": {"extended": False},
    "comparison": {"tolerance": 0.5, "change_threshold": 5.0},
    "dominant_gases": {"top": 5, "rsf_correction": False},
    "parser": {"date_order": "MDY"},
    "max_points": 20000,
    "dev_mode": False,
}


class RecipeError(ValueError):
    """Raised when an invalid recipe is handed to the pipeline."""


def _merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _positive(value: Any) -> bool:
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def is_auto(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() == "auto"


@dataclass
class Recipe:
    module: str = "rga"
    params: Dict[str, Any] = field(default_factory=dict)
    version: str = "0.1.0"

    def resolved(self) -> Dict[str, Any]:
        """``params`` laid over :data:`DEFAULT_PARAMS`."""

        return _merge(DEFAULT_PARAMS, self.params or {})

    def section(self, name: str) -> Dict[str, Any]:
        value = self.resolved().get(name)
        return value if isinstance(value, dict) else {}

    @property
    def dev_mode(self) -> bool:
        return bool(self.resolved().get("dev_mode", False))

    def validate(self) -> list[str]:
        errs = []
        params = self.resolved()

        norm = params.get("normalization", {})
        if not _positive(norm.get("reference_window")):
            errs.append("Reference window must be positive")
        baseline = norm.get("baseline", {})
        method = str(baseline.get("method", "")).lower()
        if method not in BASELINE_METHODS:
            errs.append(f"Baseline method must be one of: {', '.join(BASELINE_METHODS)}")
        if method == "percentile":
            try:
                pct = float(baseline.get("percentile"))
                if not 0 <= pct <= 100:
                    errs.append("Baseline percentile must be between 0 and 100")
            except (TypeError, ValueError):
                errs.append("Baseline percentile must be numeric")

        peaks = params.get("peaks", {})
        if not (is_auto(peaks.get("noise_floor")) or _positive(peaks.get("noise_floor"))):
            errs.append("Peak noise floor must be positive or 'auto'")
        for key, label in (("window", "window"), ("tolerance", "tolerance")):
            if not _positive(peaks.get(key)):
                errs.append(f"Peak {label} must be positive")

        limits = params.get("limits", {})
        if not _positive(limits.get("tolerance")):
            errs.append("Limit tolerance must be positive")
        try:
            if float(limits.get("mass_min")) >= float(limits.get("mass_max")):
                errs.append("Limit mass_min must be less than mass_max")
        except (TypeError, ValueError):
            errs.append("Limit mass bounds must be numeric")

        comparison = params.get("comparison", {})
        if not _positive(comparison.get("tolerance")):
            errs.append("Comparison tolerance must be positive")
        try:
            if float(comparison.get("change_threshold")) < 0:
                errs.append("Comparison change threshold must not be negative")
        except (TypeError, ValueError):
            errs.append("Comparison change threshold must be numeric")

        top = params.get("dominant_gases", {}).get("top")
        if not isinstance(top, int) or top <= 0:
            errs.append("Dominant gas count must be a positive integer")

        order = str(params.get("parser", {}).get("date_order", "")).upper()
        if sorted(order) != ["D", "M", "Y"]:
            errs.append("Parser date_order must be a permutation of D, M and Y")

        max_points = params.get("max_points")
        if not isinstance(max_points, int) or max_points <= 0:
            errs.append("max_points must be a positive integer")
        return errs

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Recipe":
        return cls(
            module=str(data.get("module") or "rga"),
            params=dict(data.get("params") or {}),
            version=str(data.get("version") or "0.1.0"),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Recipe":
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return cls.from_dict(data)


def load_preset(name: str = "rga_default") -> Recipe:
    path = PRESET_DIR / f"{name}.yaml"
    if not path.exists():
        raise FileNotFoundError(f"No recipe preset named {name!r}")
    return Recipe.from_yaml(path)
