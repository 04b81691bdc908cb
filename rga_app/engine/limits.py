"""Contamination limits over mass.

Every limit table, fixed or user authored, is an ordered list of half-open
intervals ``[mass_min, mass_max)`` whose last interval also includes its
upper bound. Values are fractions of the H₂-normalised signal.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from rga_app.engine.plugin_api import LimitCheck, NormalizedScan, Peak, ProfileViolation

logger = logging.getLogger(__name__)

PROFILE_COLORS: Tuple[str, ...] = (
    "#10B981",
    "#3B82F6",
    "#8B5CF6",
    "#F59E0B",
    "#EF4444",
    "#EC4899",
    "#14B8A6",
    "#6366F1",
)

DOMAIN = (0.0, 100.0)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class LimitRange:
    mass_min: float
    mass_max: float
    limit: float
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "massMin": self.mass_min,
            "massMax": self.mass_max,
            "limit": self.limit,
        }
        if self.notes:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LimitRange":
        return cls(
            mass_min=float(data.get("massMin", 0.0)),
            mass_max=float(data.get("massMax", 0.0)),
            limit=float(data.get("limit", 0.0)),
            notes=str(data["notes"]) if data.get("notes") else None,
        )


@dataclass
class LimitProfile:
    id: str
    name: str
    ranges: List[LimitRange] = field(default_factory=list)
    description: Optional[str] = None
    color: str = PROFILE_COLORS[2]
    is_preset: bool = False
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    def sorted_ranges(self) -> List[LimitRange]:
        return sorted(self.ranges, key=lambda r: (r.mass_min, r.mass_max))

    def validate(self) -> list[str]:
        errs = []
        if not self.name.strip():
            errs.append("Profile name must not be empty")
        if not self.ranges:
            errs.append("Profile must define at least one range")
            return errs
        for rng in self.ranges:
            if rng.mass_max <= rng.mass_min:
                errs.append(f"Range {rng.mass_min:g}-{rng.mass_max:g} is empty or inverted")
            if not np.isfinite(rng.limit) or rng.limit <= 0:
                errs.append(f"Range {rng.mass_min:g}-{rng.mass_max:g} must have a positive limit")
        ordered = self.sorted_ranges()
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.mass_min < prev.mass_max:
                errs.append(
                    f"Ranges {prev.mass_min:g}-{prev.mass_max:g} and "
                    f"{nxt.mass_min:g}-{nxt.mass_max:g} overlap"
                )
        if self.is_preset:
            lo, hi = DOMAIN
            if ordered[0].mass_min > lo or ordered[-1].mass_max < hi:
                errs.append(f"Preset must cover masses {lo:g}-{hi:g}")
            for prev, nxt in zip(ordered, ordered[1:]):
                if nxt.mass_min > prev.mass_max:
                    errs.append(f"Gap between {prev.mass_max:g} and {nxt.mass_min:g}")
        return errs

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "isPreset": bool(self.is_preset),
            "ranges": [rng.to_dict() for rng in self.ranges],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LimitProfile":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            ranges=[LimitRange.from_dict(item) for item in data.get("ranges") or []],
            description=str(data["description"]) if data.get("description") else None,
            color=str(data.get("color") or PROFILE_COLORS[2]),
            is_preset=bool(data.get("isPreset") or False),
            created_at=str(data.get("createdAt") or _now_iso()),
            updated_at=str(data.get("updatedAt") or _now_iso()),
        )


def _preset(pid, name, description, color, created, ranges) -> LimitProfile:
    return LimitProfile(
        id=pid,
        name=name,
        description=description,
        color=color,
        is_preset=True,
        ranges=[LimitRange(*item) for item in ranges],
        created_at=created,
        updated_at=created,
    )


# Integer masses land inside the intervals, so checks at nominal masses
# never sit on a breakpoint.
GSI_PRESET = _preset(
    "gsi-7.3e",
    "GSI 7.3e (2019)",
    "GSI specification 7.3e for UHV components",
    "#10B981",
    "2019-01-01T00:00:00.000Z",
    (
        (0.0, 12.5, 1.0, "H₂ region"),
        (12.5, 19.5, 0.1, "Light gases"),
        (19.5, 27.5, 0.02, "Between H₂O and N₂"),
        (27.5, 28.5, 0.1, "N₂/CO allowed"),
        (28.5, 43.5, 0.02),
        (43.5, 44.75, 0.1, "CO₂ allowed"),
        (44.75, 45.5, 0.02),
        (45.5, 100.0, 0.001, "Heavy masses"),
    ),
)

CERN_PRESET = _preset(
    "cern-3076004",
    "CERN 3076004 (2024)",
    "CERN technical specification for vacuum components",
    "#3B82F6",
    "2024-01-01T00:00:00.000Z",
    (
        (0.0, 3.5, 1.0, "H₂ region"),
        (3.5, 20.5, 0.1, "H₂O region"),
        (20.5, 27.5, 0.01, "Between H₂O and N₂"),
        (27.5, 28.5, 0.1, "N₂/CO allowed"),
        (28.5, 32.5, 0.01, "Between N₂ and O₂"),
        (32.5, 43.5, 0.002, "Hydrocarbon region"),
        (43.5, 45.5, 0.05, "CO₂ allowed"),
        (45.5, 100.0, 0.0001, "Heavy hydrocarbons"),
    ),
)

CERN_UNBAKED_PRESET = _preset(
    "cern-unbaked",
    "CERN Unbaked",
    "CERN limits for unbaked systems, normalised to H₂O",
    "#6366F1",
    "2024-01-01T00:00:00.000Z",
    (
        (0.0, 3.0, 0.5, "H₂ (often lower than H₂O)"),
        (3.0, 17.5, 0.01, "Before H₂O"),
        (17.5, 18.5, 1.0, "H₂O reference peak"),
        (18.5, 27.5, 0.01, "Between H₂O and N₂"),
        (27.5, 28.5, 0.1, "N₂/CO"),
        (28.5, 43.5, 0.01),
        (43.5, 44.5, 0.05, "CO₂"),
        (44.5, 100.0, 0.001, "Heavy masses"),
    ),
)

DESY_PRESET = _preset(
    "desy-hc-free",
    "DESY HC-Free",
    "DESY hydrocarbon-free criterion: Σ(m45-100) < 0.1%",
    "#14B8A6",
    "2024-01-01T00:00:00.000Z",
    (
        (0.0, 3.0, 1.0, "H₂ allowed"),
        (3.0, 20.5, 0.2, "H₂O region"),
        (20.5, 27.5, 0.02),
        (27.5, 28.5, 0.1, "N₂/CO"),
        (28.5, 43.5, 0.02),
        (43.5, 44.5, 0.05, "CO₂"),
        (44.5, 100.0, 0.001, "HC-free: sum < 0.1%"),
    ),
)

GSI_CRYO_PRESET = _preset(
    "gsi-cryo",
    "GSI Cryogenic",
    "GSI stricter limits for cryogenic beam tubes",
    "#EC4899",
    "2024-01-01T00:00:00.000Z",
    (
        (0.0, 3.0, 1.0, "H₂ allowed"),
        (3.0, 17.5, 0.05),
        (17.5, 18.5, 0.1, "H₂O max 10%"),
        (18.5, 27.5, 0.01),
        (27.5, 28.5, 0.05, "N₂/CO reduced"),
        (28.5, 43.5, 0.005),
        (43.5, 44.5, 0.02, "CO₂"),
        (44.5, 100.0, 0.0005, "Stricter HC limits"),
    ),
)

DEFAULT_PRESETS: Tuple[LimitProfile, ...] = (
    GSI_PRESET,
    CERN_PRESET,
    CERN_UNBAKED_PRESET,
    DESY_PRESET,
    GSI_CRYO_PRESET,
)

SPECIFICATIONS: Dict[str, LimitProfile] = {"GSI": GSI_PRESET, "CERN": CERN_PRESET}


def find_range(ranges: Sequence[LimitRange], mass: float) -> Optional[LimitRange]:
    """Return the range containing ``mass`` or ``None`` when no range does."""

    if not ranges or mass is None or not np.isfinite(mass):
        return None
    ordered = sorted(ranges, key=lambda r: (r.mass_min, r.mass_max))
    starts = [r.mass_min for r in ordered]
    pos = bisect.bisect_right(starts, mass) - 1
    if pos < 0:
        return None
    candidate = ordered[pos]
    if mass < candidate.mass_max:
        return candidate
    if pos == len(ordered) - 1 and mass == candidate.mass_max:
        return candidate
    return None


def find_limit(ranges: Sequence[LimitRange], mass: float) -> Optional[float]:
    rng = find_range(ranges, mass)
    return rng.limit if rng is not None else None


def _resolve_spec(spec: Union[str, LimitProfile]) -> LimitProfile:
    if isinstance(spec, LimitProfile):
        return spec
    if isinstance(spec, str):
        profile = SPECIFICATIONS.get(spec.upper())
        if profile is not None:
            return profile
    raise ValueError(f"Unknown limit specification: {spec!r}")


def get_limit(spec: Union[str, LimitProfile], mass: float) -> float:
    """Allowed normalised value at ``mass`` for ``"GSI"`` or ``"CERN"``.

    Masses outside the specification's domain use the nearest in-domain
    interval.
    """

    profile = _resolve_spec(spec)
    ordered = profile.sorted_ranges()
    clamped = min(max(float(mass), ordered[0].mass_min), ordered[-1].mass_max)
    limit = find_limit(ordered, clamped)
    if limit is None:
        raise ValueError(f"Specification {profile.name} has no limit at mass {mass:g}")
    return limit


def check_limits(
    normalized: NormalizedScan,
    *,
    tolerance: float = 0.1,
    mass_range: Tuple[float, float] = DOMAIN,
) -> List[LimitCheck]:
    mass = np.asarray(normalized.mass, dtype=float)
    values = np.asarray(normalized.normalized_to_h2, dtype=float)
    if mass.size == 0:
        return []

    order = np.argsort(mass, kind="stable")
    sorted_mass = mass[order]
    reliable = bool(normalized.valid)
    checks: List[LimitCheck] = []
    lo = int(np.ceil(mass_range[0]))
    hi = int(np.floor(mass_range[1]))
    for nominal in range(lo, hi + 1):
        pos = int(np.searchsorted(sorted_mass, nominal))
        best = None
        best_distance = tolerance
        for cand in (pos - 1, pos):
            if 0 <= cand < sorted_mass.size:
                distance = abs(sorted_mass[cand] - nominal)
                if distance < best_distance:
                    best = cand
                    best_distance = distance
        if best is None:
            continue
        measured = float(values[order[best]])
        gsi_limit = get_limit("GSI", nominal)
        cern_limit = get_limit("CERN", nominal)
        checks.append(
            LimitCheck(
                mass=nominal,
                measured_value=measured,
                gsi_limit=gsi_limit,
                cern_limit=cern_limit,
                gsi_passed=measured <= gsi_limit,
                cern_passed=measured <= cern_limit,
                reliable=reliable,
            )
        )
    if not reliable and checks:
        logger.warning("Limit checks computed on invalid normalisation are unreliable")
    return checks


def _data_points(data: Any) -> List[Tuple[float, float]]:
    if isinstance(data, NormalizedScan):
        return list(zip(data.mass.tolist(), data.normalized_to_h2.tolist()))
    points: List[Tuple[float, float]] = []
    for item in data:
        if isinstance(item, Peak):
            points.append((item.mass, item.normalized_value))
        else:
            points.append((float(item.mass), float(item.normalized_to_h2)))
    return points


def _require_profile(profile: Any) -> LimitProfile:
    if not isinstance(profile, LimitProfile):
        raise TypeError(f"Expected a LimitProfile, got {type(profile).__name__}")
    return profile


def get_profile_violations(data: Any, profile: LimitProfile) -> List[ProfileViolation]:
    """Points whose value exceeds the limit of the range containing their mass.

    ``data`` may be a :class:`NormalizedScan`, normalised points or peaks.
    """

    profile = _require_profile(profile)
    ordered = profile.sorted_ranges()
    violations: List[ProfileViolation] = []
    for mass, value in _data_points(data):
        rng = find_range(ordered, mass)
        if rng is None or not np.isfinite(value) or value <= rng.limit:
            continue
        violations.append(
            ProfileViolation(
                mass=mass,
                measured_value=value,
                limit=rng.limit,
                mass_min=rng.mass_min,
                mass_max=rng.mass_max,
                notes=rng.notes,
            )
        )
    return violations


def check_profile_passes(data: Any, profile: LimitProfile) -> bool:
    return not get_profile_violations(data, profile)


def generate_limit_curve(
    spec_or_profile: Union[str, LimitProfile],
    mass_range: Tuple[float, float] = DOMAIN,
    step: float = 0.1,
) -> List[Tuple[float, float]]:
    """Sample a limit table for plotting.

    Fixed specifications are defined everywhere; user profiles skip masses
    that fall in gaps between their ranges.
    """

    if spec_or_profile is None:
        raise TypeError("A specification name or LimitProfile is required")
    if step <= 0:
        raise ValueError("step must be positive")
    profile = _resolve_spec(spec_or_profile)
    fixed = profile in SPECIFICATIONS.values()
    masses = np.round(np.arange(mass_range[0], mass_range[1] + step / 2, step), 6)
    curve: List[Tuple[float, float]] = []
    ordered = profile.sorted_ranges()
    for mass in masses.tolist():
        limit = get_limit(profile, mass) if fixed else find_limit(ordered, mass)
        if limit is not None:
            curve.append((mass, limit))
    return curve


def next_profile_color(profiles: Iterable[LimitProfile]) -> str:
    used = {p.color for p in profiles}
    for color in PROFILE_COLORS[2:]:
        if color not in used:
            return color
    return PROFILE_COLORS[2]
