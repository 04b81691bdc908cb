from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np


def _frozen_array(values: Iterable[float] | np.ndarray) -> np.ndarray:
    arr = np.array(values, dtype=float).ravel()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class FilenameInfo:
    chamber_name: Optional[str] = None
    pressure: Optional[str] = None
    total_pressure_mbar: Optional[float] = None
    sem_voltage: Optional[int] = None
    temperature_c: Optional[int] = None
    duration: Optional[str] = None
    system_state: str = "unknown"
    description: Optional[str] = None


@dataclass(frozen=True)
class ScanMetadata:
    source_file: str = ""
    export_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    task_name: str = "Scan"
    first_mass: float = 0.0
    scan_width: float = 100.0
    chamber_name: Optional[str] = None
    pressure: Optional[str] = None
    source_format: str = "quadera"
    cycles: int = 0
    filename_info: Optional[FilenameInfo] = None

    @property
    def mass_domain(self) -> Tuple[float, float]:
        return (self.first_mass, self.first_mass + self.scan_width)


@dataclass(frozen=True, eq=False)
class RawScan:
    metadata: ScanMetadata
    mass: np.ndarray
    current: np.ndarray

    def __post_init__(self) -> None:
        mass = _frozen_array(self.mass)
        current = _frozen_array(self.current)
        if mass.shape != current.shape:
            raise ValueError("mass and current must have the same length")
        object.__setattr__(self, "mass", mass)
        object.__setattr__(self, "current", current)

    @classmethod
    def from_points(
        cls,
        points: Iterable[Tuple[float, float]],
        metadata: ScanMetadata | None = None,
    ) -> "RawScan":
        pairs = list(points)
        return cls(
            metadata=metadata or ScanMetadata(),
            mass=[p[0] for p in pairs],
            current=[p[1] for p in pairs],
        )

    @property
    def points(self) -> List[Tuple[float, float]]:
        return list(zip(self.mass.tolist(), self.current.tolist()))

    def __len__(self) -> int:
        return int(self.mass.size)


@dataclass(frozen=True)
class NormalizedPoint:
    mass: float
    current: float
    background_subtracted: float
    normalized_to_h2: float


@dataclass(frozen=True, eq=False)
class NormalizedScan:
    """Background-subtracted, H₂-referenced form of a :class:`RawScan`.

    ``valid`` is False whenever the H₂ reference was missing or not
    positive. In that case ``normalized_to_h2`` holds values scaled by the
    fallback named in ``reference_source`` and must not be read as an H₂
    ratio.
    """

    mass: np.ndarray
    current: np.ndarray
    background_subtracted: np.ndarray
    normalized_to_h2: np.ndarray
    baseline: float = 0.0
    baseline_method: str = "percentile"
    reference_mass: float = 2.0
    reference_value: float = 0.0
    reference_index: Optional[int] = None
    reference_source: str = "none"
    valid: bool = False
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        for name in ("mass", "current", "background_subtracted", "normalized_to_h2"):
            object.__setattr__(self, name, _frozen_array(getattr(self, name)))

    @property
    def points(self) -> List[NormalizedPoint]:
        return [
            NormalizedPoint(float(m), float(c), float(b), float(n))
            for m, c, b, n in zip(
                self.mass, self.current, self.background_subtracted, self.normalized_to_h2
            )
        ]

    def __len__(self) -> int:
        return int(self.mass.size)

    def __iter__(self) -> Iterator[NormalizedPoint]:
        return iter(self.points)


@dataclass(frozen=True)
class Peak:
    mass: float
    integrated_current: float
    normalized_value: float
    gas_identification: str = "unknown"
    fragments: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LimitCheck:
    mass: int
    measured_value: float
    gsi_limit: float
    cern_limit: float
    gsi_passed: bool
    cern_passed: bool
    reliable: bool = True


@dataclass(frozen=True)
class ProfileViolation:
    mass: float
    measured_value: float
    limit: float
    mass_min: float
    mass_max: float
    notes: Optional[str] = None


@dataclass(frozen=True)
class QualityCheck:
    name: str
    description: str
    formula: str
    passed: bool
    measured_value: float
    threshold: float


@dataclass(frozen=True)
class GasFraction:
    gas: str
    percentage: float


@dataclass(frozen=True)
class AnalysisResult:
    metadata: ScanMetadata
    normalized_data: NormalizedScan
    peaks: Tuple[Peak, ...]
    limit_checks: Tuple[LimitCheck, ...]
    quality_checks: Tuple[QualityCheck, ...]
    total_pressure: float
    dominant_gases: Tuple[GasFraction, ...]
    audit: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def normalization_valid(self) -> bool:
        return bool(self.normalized_data.valid)

    @property
    def limits_reliable(self) -> bool:
        return all(check.reliable for check in self.limit_checks)

    def top_peaks(self, count: int = 10) -> List[Peak]:
        return sorted(self.peaks, key=lambda p: p.normalized_value, reverse=True)[:count]


@dataclass(frozen=True)
class PeakComparison:
    mass: float
    gas_identification: str
    before_value: float
    after_value: float
    percentage_change: float
    status: str


@dataclass(frozen=True)
class LimitImprovement:
    mass: int
    before_gsi_passed: bool
    after_gsi_passed: bool
    before_cern_passed: bool
    after_cern_passed: bool
    status: str


@dataclass(frozen=True)
class ComparisonSummary:
    total_peaks_compared: int
    improved_peaks: int
    worsened_peaks: int
    unchanged_peaks: int
    resolved_violations: int
    new_violations: int
    overall_grade: str


@dataclass(frozen=True)
class ComparisonResult:
    before_analysis: AnalysisResult
    after_analysis: AnalysisResult
    peak_comparisons: Tuple[PeakComparison, ...]
    limit_improvements: Tuple[LimitImprovement, ...]
    overall_improvement: float
    summary: ComparisonSummary


@dataclass
class BatchResult:
    analyses: List[AnalysisResult]
    qc_table: List[Dict[str, Any]]
    comparison: Optional[ComparisonResult] = None
    exports: Dict[str, str] = field(default_factory=dict)
    audit: List[str] = field(default_factory=list)
    report_text: Optional[str] = None


class AnalysisPlugin:
    id: str = "base"
    label: str = "Base"
    xlabel: str = "x"

    def detect(self, paths: Iterable[str]) -> bool:
        return False

    def load(self, paths: Iterable[str]) -> List[RawScan]:
        raise NotImplementedError

    def validate(self, scans: Sequence[RawScan], recipe: Dict[str, Any]) -> List[str]:
        return []

    def analyze(self, scans: Sequence[RawScan], recipe: Dict[str, Any]) -> Tuple[List[AnalysisResult], List[Dict[str, Any]]]:
        return [], []

    def export(self, analyses: List[AnalysisResult], qc: List[Dict[str, Any]], recipe: Dict[str, Any]) -> BatchResult:
        return BatchResult(analyses=analyses, qc_table=qc)
