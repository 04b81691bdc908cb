import json

import pytest

from rga_app.engine.limit_profiles import LimitProfileStore
from rga_app.engine.limits import DEFAULT_PRESETS, LimitRange


def _store(tmp_path):
    return LimitProfileStore(tmp_path / "profiles" / "limit_profiles.json")


def test_missing_file_loads_presets_only(tmp_path):
    profiles = _store(tmp_path).load()
    assert [p.id for p in profiles] == [p.id for p in DEFAULT_PRESETS]
    assert all(p.is_preset for p in profiles)


def test_loaded_presets_are_copies(tmp_path):
    store = _store(tmp_path)
    store.load()[0].name = "mutated"
    assert store.load()[0].name == DEFAULT_PRESETS[0].name


def test_create_persists_custom_profiles_only(tmp_path):
    store = _store(tmp_path)
    profile = store.create("Beamline", [LimitRange(0, 50, 0.5), LimitRange(50, 100, 0.01)], description="strict")

    assert profile.id.startswith("custom-")
    assert profile.color == "#8B5CF6"
    payload = json.loads(store.path.read_text(encoding="utf-8"))
    assert [item["id"] for item in payload] == [profile.id]
    assert payload[0]["ranges"][1]["massMin"] == 50

    loaded = store.load()
    assert len(loaded) == len(DEFAULT_PRESETS) + 1
    assert loaded[-1].name == "Beamline"
    assert store.get(profile.id).description == "strict"


def test_create_rejects_invalid_profile(tmp_path):
    store = _store(tmp_path)
    with pytest.raises(ValueError):
        store.create("Broken", [LimitRange(10, 5, 0.1)])
    assert not store.path.exists()


def test_presets_cannot_be_changed(tmp_path):
    store = _store(tmp_path)
    assert store.delete("gsi-7.3e") is False
    with pytest.raises(ValueError):
        store.upsert(store.get("cern-3076004"))


def test_delete_custom_profile(tmp_path):
    store = _store(tmp_path)
    profile = store.create("Temp", [LimitRange(0, 100, 0.1)])
    assert store.delete(profile.id) is True
    assert store.get(profile.id) is None
    assert store.delete(profile.id) is False


def test_duplicate_preset_makes_editable_copy(tmp_path):
    store = _store(tmp_path)
    copy = store.duplicate("gsi-7.3e")

    assert copy.name == "GSI 7.3e (2019) (Copy)"
    assert not copy.is_preset
    assert copy.id != "gsi-7.3e"
    assert copy.ranges == store.get("gsi-7.3e").ranges
    assert copy.color == "#8B5CF6"

    second = store.duplicate("gsi-7.3e", name="Mine")
    assert second.name == "Mine"
    assert second.id != copy.id
    assert second.color == "#F59E0B"

    with pytest.raises(KeyError):
        store.duplicate("nope")


def test_upsert_replaces_existing(tmp_path):
    store = _store(tmp_path)
    profile = store.create("Before", [LimitRange(0, 100, 0.1)])
    profile.name = "After"
    store.upsert(profile)

    names = [p.name for p in store.load() if not p.is_preset]
    assert names == ["After"]


def test_unreadable_file_is_ignored(tmp_path):
    store = _store(tmp_path)
    store.path.parent.mkdir(parents=True)
    store.path.write_text("{not json", encoding="utf-8")
    assert len(store.load()) == len(DEFAULT_PRESETS)
