"""Serialisable front-end session.

State transitions return new :class:`SessionState` objects. Loading and
saving go through :func:`load_session` and :func:`save_session`, which the
analysis pipeline never calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from rga_app.engine.plugin_api import AnalysisResult

logger = logging.getLogger(__name__)

MAX_FILES = 3
DEFAULT_ACTIVE_PROFILES: Tuple[str, ...] = ("gsi-7.3e", "cern-3076004")
Y_AXIS_MODES = ("normalized", "absolute", "pressure")


@dataclass(frozen=True)
class ChartOptions:
    log_scale: bool = True
    show_gsi_limit: bool = True
    show_cern_limit: bool = True
    normalization_mass: float = 2.0
    y_axis_mode: str = "normalized"
    visible_files: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        # visible_files is rebuilt when files are loaded
        return {
            "logScale": self.log_scale,
            "showGSILimit": self.show_gsi_limit,
            "showCERNLimit": self.show_cern_limit,
            "normalizationMass": self.normalization_mass,
            "yAxisMode": self.y_axis_mode,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChartOptions":
        mode = str(data.get("yAxisMode") or "normalized")
        return cls(
            log_scale=bool(data.get("logScale", True)),
            show_gsi_limit=bool(data.get("showGSILimit", True)),
            show_cern_limit=bool(data.get("showCERNLimit", True)),
            normalization_mass=float(data.get("normalizationMass", 2.0)),
            y_axis_mode=mode if mode in Y_AXIS_MODES else "normalized",
        )


@dataclass(frozen=True)
class SessionFile:
    id: str
    path: str
    start_time: Optional[datetime] = None
    analysis: Optional[AnalysisResult] = None

    @classmethod
    def from_analysis(cls, analysis: AnalysisResult, path: str | Path | None = None) -> "SessionFile":
        return cls(
            id=str(uuid4()),
            path=str(path or analysis.metadata.source_file),
            start_time=analysis.metadata.start_time,
            analysis=analysis,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "startTime": self.start_time.isoformat() if self.start_time else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionFile":
        start = data.get("startTime")
        try:
            start_time = datetime.fromisoformat(start) if start else None
        except (TypeError, ValueError):
            start_time = None
        return cls(id=str(data.get("id") or uuid4()), path=str(data.get("path") or ""), start_time=start_time)


def _ordered(files: List[SessionFile]) -> Tuple[SessionFile, ...]:
    # files without a start time sort first, as if dated at the epoch
    return tuple(sorted(files, key=lambda f: (f.start_time is not None, f.start_time or datetime.min)))


@dataclass(frozen=True)
class SessionState:
    files: Tuple[SessionFile, ...] = ()
    active_profile_ids: Tuple[str, ...] = DEFAULT_ACTIVE_PROFILES
    chart_options: ChartOptions = field(default_factory=ChartOptions)

    def add_file(self, entry: SessionFile) -> "SessionState":
        if len(self.files) >= MAX_FILES:
            logger.info("Session already holds %d files; ignoring %s", MAX_FILES, entry.path)
            return self
        files = _ordered(list(self.files) + [entry])
        return replace(
            self,
            files=files,
            chart_options=replace(self.chart_options, visible_files=tuple(f.id for f in files)),
        )

    def remove_file(self, file_id: str) -> "SessionState":
        files = _ordered([f for f in self.files if f.id != file_id])
        visible = tuple(fid for fid in self.chart_options.visible_files if fid != file_id)
        return replace(self, files=files, chart_options=replace(self.chart_options, visible_files=visible))

    def clear_files(self) -> "SessionState":
        return replace(self, files=(), chart_options=replace(self.chart_options, visible_files=()))

    def toggle_profile(self, profile_id: str) -> "SessionState":
        if profile_id in self.active_profile_ids:
            ids = tuple(pid for pid in self.active_profile_ids if pid != profile_id)
        else:
            ids = self.active_profile_ids + (profile_id,)
        return replace(self, active_profile_ids=ids)

    @property
    def analyses(self) -> List[AnalysisResult]:
        return [f.analysis for f in self.files if f.analysis is not None]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "activeLimitProfileIds": list(self.active_profile_ids),
            "chartOptions": self.chart_options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionState":
        files = [SessionFile.from_dict(item) for item in data.get("files") or [] if isinstance(item, Mapping)]
        files = list(_ordered(files))[:MAX_FILES]
        ids = data.get("activeLimitProfileIds")
        options = ChartOptions.from_dict(data.get("chartOptions") or {})
        return cls(
            files=tuple(files),
            active_profile_ids=tuple(str(i) for i in ids) if isinstance(ids, list) else DEFAULT_ACTIVE_PROFILES,
            chart_options=replace(options, visible_files=tuple(f.id for f in files)),
        )


def load_session(path: str | Path) -> SessionState:
    session_path = Path(path)
    if not session_path.exists():
        return SessionState()
    with session_path.open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable session file %s", session_path)
            return SessionState()
    if not isinstance(payload, dict):
        return SessionState()
    return SessionState.from_dict(payload)


def save_session(state: SessionState, path: str | Path) -> Path:
    session_path = Path(path)
    session_path.parent.mkdir(parents=True, exist_ok=True)
    with session_path.open("w", encoding="utf-8") as handle:
        json.dump(state.to_dict(), handle, indent=2)
    return session_path
