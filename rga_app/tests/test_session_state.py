import json
from datetime import datetime

from rga_app.engine.session_state import (
    DEFAULT_ACTIVE_PROFILES,
    MAX_FILES,
    ChartOptions,
    SessionFile,
    SessionState,
    load_session,
    save_session,
)


def _file(fid, start=None):
    return SessionFile(id=fid, path=f"/data/{fid}.txt", start_time=start)


def test_files_sorted_by_start_time():
    state = SessionState()
    state = state.add_file(_file("late", datetime(2025, 12, 17, 9, 0)))
    state = state.add_file(_file("early", datetime(2025, 12, 16, 9, 0)))
    state = state.add_file(_file("undated"))

    assert [f.id for f in state.files] == ["undated", "early", "late"]
    assert state.chart_options.visible_files == ("undated", "early", "late")


def test_session_is_capped():
    state = SessionState()
    for idx in range(MAX_FILES + 1):
        state = state.add_file(_file(f"f{idx}", datetime(2025, 1, idx + 1)))
    assert len(state.files) == MAX_FILES
    assert "f3" not in [f.id for f in state.files]


def test_transitions_do_not_mutate():
    empty = SessionState()
    one = empty.add_file(_file("a"))
    assert empty.files == ()
    assert one.remove_file("a").files == ()
    assert one.remove_file("a").chart_options.visible_files == ()
    assert one.clear_files().files == ()


def test_toggle_profile():
    state = SessionState()
    assert state.active_profile_ids == DEFAULT_ACTIVE_PROFILES
    state = state.toggle_profile("desy-hc-free")
    assert state.active_profile_ids[-1] == "desy-hc-free"
    state = state.toggle_profile("gsi-7.3e")
    assert "gsi-7.3e" not in state.active_profile_ids


def test_chart_options_dict():
    options = ChartOptions(log_scale=False, y_axis_mode="pressure", visible_files=("x",))
    data = options.to_dict()
    assert data["logScale"] is False
    assert "visibleFiles" not in data
    assert ChartOptions.from_dict({"yAxisMode": "bogus"}).y_axis_mode == "normalized"


def test_save_and_load_round_trip(tmp_path):
    state = SessionState(chart_options=ChartOptions(show_cern_limit=False))
    state = state.add_file(_file("a", datetime(2025, 12, 16, 12, 58, 16)))
    path = save_session(state, tmp_path / "session" / "state.json")

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["files"][0]["startTime"] == "2025-12-16T12:58:16"

    restored = load_session(path)
    assert [f.id for f in restored.files] == ["a"]
    assert restored.files[0].start_time == datetime(2025, 12, 16, 12, 58, 16)
    assert restored.files[0].analysis is None
    assert restored.chart_options.show_cern_limit is False
    assert restored.chart_options.visible_files == ("a",)
    assert restored.analyses == []


def test_load_missing_or_broken_session(tmp_path):
    assert load_session(tmp_path / "missing.json") == SessionState()
    broken = tmp_path / "broken.json"
    broken.write_text("[1, 2", encoding="utf-8")
    assert load_session(broken) == SessionState()
