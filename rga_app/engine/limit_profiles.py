from __future__ import annotations

import copy
import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from rga_app.engine.limits import DEFAULT_PRESETS, LimitProfile, LimitRange, next_profile_color

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_PATH = Path.home() / "RgaApp" / "limit_profiles.json"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _custom_id(existing: Iterable[LimitProfile]) -> str:
    taken = {p.id for p in existing}
    stamp = int(time.time() * 1000)
    while f"custom-{stamp}" in taken:
        stamp += 1
    return f"custom-{stamp}"


class LimitProfileStore:
    """JSON file of user-defined limit profiles.

    Only custom profiles are written. Built-in presets are merged in front
    on every load and cannot be deleted or overwritten.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_PROFILE_PATH

    def _load_custom(self) -> List[LimitProfile]:
        if not self.path.exists():
            return []
        with self.path.open("r", encoding="utf-8") as handle:
            try:
                payload = json.load(handle)
            except json.JSONDecodeError:
                logger.warning("Ignoring unreadable limit profile file %s", self.path)
                return []
        if not isinstance(payload, list):
            return []
        preset_ids = {p.id for p in DEFAULT_PRESETS}
        profiles = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            profile = LimitProfile.from_dict(item)
            if profile.is_preset or profile.id in preset_ids:
                continue
            profiles.append(profile)
        return profiles

    def load(self) -> List[LimitProfile]:
        return [copy.deepcopy(p) for p in DEFAULT_PRESETS] + self._load_custom()

    def save(self, profiles: Iterable[LimitProfile]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [p.to_dict() for p in profiles if not p.is_preset]
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, ensure_ascii=False)

    def get(self, profile_id: str) -> Optional[LimitProfile]:
        for profile in self.load():
            if profile.id == profile_id:
                return profile
        return None

    def upsert(self, profile: LimitProfile) -> None:
        if profile.is_preset:
            raise ValueError(f"Preset profile {profile.id} cannot be modified")
        profiles = self._load_custom()
        for idx, existing in enumerate(profiles):
            if existing.id == profile.id:
                profile.updated_at = _now_iso()
                profiles[idx] = profile
                break
        else:
            profiles.append(profile)
        self.save(profiles)

    def delete(self, profile_id: str) -> bool:
        if any(p.id == profile_id for p in DEFAULT_PRESETS):
            logger.warning("Refusing to delete preset profile %s", profile_id)
            return False
        profiles = self._load_custom()
        remaining = [p for p in profiles if p.id != profile_id]
        if len(remaining) == len(profiles):
            return False
        self.save(remaining)
        return True

    def create(
        self,
        name: str,
        ranges: Sequence[LimitRange],
        *,
        description: str | None = None,
        color: str | None = None,
    ) -> LimitProfile:
        profile = LimitProfile(
            id=_custom_id(self.load()),
            name=name,
            ranges=list(ranges),
            description=description,
            color=color or next_profile_color(self.load()),
        )
        errors = profile.validate()
        if errors:
            raise ValueError("; ".join(errors))
        self.upsert(profile)
        return profile

    def duplicate(self, profile_id: str, name: str | None = None) -> LimitProfile:
        source = self.get(profile_id)
        if source is None:
            raise KeyError(profile_id)
        now = _now_iso()
        profile = LimitProfile(
            id=_custom_id(self.load()),
            name=name or f"{source.name} (Copy)",
            ranges=list(source.ranges),
            description=source.description,
            color=next_profile_color(self.load()),
            is_preset=False,
            created_at=now,
            updated_at=now,
        )
        self.upsert(profile)
        return profile
