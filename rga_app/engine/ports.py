"""Interfaces for collaborators that live outside the analysis core."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence, Union, runtime_checkable

from rga_app.engine.plugin_api import AnalysisResult, ComparisonResult, NormalizedPoint, Peak

logger = logging.getLogger(__name__)


@runtime_checkable
class DiagnosisDetector(Protocol):
    def detect(self, points: Sequence[NormalizedPoint], peaks: Sequence[Peak]) -> List[Any]:
        ...


@runtime_checkable
class NarrativeGenerator(Protocol):
    def generate(
        self,
        analysis: AnalysisResult,
        prompt: str,
        previous: Optional[AnalysisResult] = None,
    ) -> str:
        ...


@runtime_checkable
class AnalysisRepository(Protocol):
    def save(
        self,
        result: Union[AnalysisResult, ComparisonResult],
        tags: Sequence[str],
        notes: str,
    ) -> str:
        ...


def run_detectors(detectors: Sequence[DiagnosisDetector], analysis: AnalysisResult) -> List[Any]:
    findings: List[Any] = []
    points = analysis.normalized_data.points
    for detector in detectors:
        findings.extend(detector.detect(points, analysis.peaks))
    return findings


def generate_narrative(
    generator: NarrativeGenerator,
    analysis: AnalysisResult,
    prompt: str,
    previous: Optional[AnalysisResult] = None,
) -> Optional[str]:
    """Best-effort narrative; any generator failure is logged and yields ``None``."""

    try:
        return generator.generate(analysis, prompt, previous)
    except Exception:
        logger.exception("Narrative generation failed")
        return None
