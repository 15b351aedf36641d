"""
Tests for the persistent project state store.
"""

import json
from unittest.mock import patch

import pytest

from workon.constants import ProjectStatus, ResourceKind, ResourceStatus
from workon.errors import ProjectBusy, StoreWriteFailure
from workon.state import ProjectState, StateStore, TrackedResource

pytestmark = pytest.mark.unit


def _state(name="demo", *records):
    return ProjectState(project_name=name, base_tag=2, resources=list(records))


def _record(resource_id, status=ResourceStatus.LIVE, **kw):
    return TrackedResource(
        project_name="demo",
        resource_id=resource_id,
        host_entity_id=kw.pop("host_entity_id", f"win-{resource_id}"),
        tag=kw.pop("tag", 2),
        status=status,
        **kw,
    )


def test_round_trip_is_lossless(store):
    original = _state(
        "demo",
        _record("editor", pid=101, kind=ResourceKind.EDITOR, token="abc"),
        _record("docs", tag="docs", status=ResourceStatus.ORPHANED),
    )
    original.created_tags = ["docs"]
    original.failures = {"shell": "alacritty: command not found"}

    committed = store.commit("demo", lambda _current: original)
    loaded = store.get("demo")

    assert loaded == committed
    assert loaded.resources[0].pid == 101
    assert loaded.resources[0].kind is ResourceKind.EDITOR
    assert loaded.resources[1].tag == "docs"
    assert loaded.failures == {"shell": "alacritty: command not found"}


def test_document_layout(store):
    store.commit("demo", lambda _current: _state("demo", _record("editor")))
    raw = json.loads((store.state_dir / "demo.json").read_text())
    assert raw["schema"] == 1
    assert raw["status"] == "running"
    assert raw["resources"][0]["resource_id"] == "editor"
    assert "pid" not in raw["resources"][0]
    assert raw["updated_at"]


def test_unknown_fields_are_ignored(store):
    doc = _state("demo", _record("editor")).to_dict()
    doc["future_field"] = {"x": 1}
    doc["resources"][0]["colour"] = "blue"
    (store.state_dir / "demo.json").write_text(json.dumps(doc))
    loaded = store.get("demo")
    assert loaded.resources[0].resource_id == "editor"


def test_get_absent_returns_none(store):
    assert store.get("nothing") is None
    assert store.warnings == []


def test_corrupt_document_is_absent_with_warning(store):
    (store.state_dir / "broken.json").write_text("{not json")
    assert store.get("broken") is None
    assert len(store.warnings) == 1
    assert "broken.json" in store.warnings[0]


def test_load_skips_corrupt_documents(store):
    store.commit("good", lambda _current: _state("good"))
    (store.state_dir / "bad.json").write_text("[]")
    projects = store.load()
    assert list(projects) == ["good"]
    assert store.warnings


def test_commit_mutator_receives_private_copy(store):
    store.commit("demo", lambda _current: _state("demo", _record("editor")))
    captured = []
    store.commit("demo", lambda current: captured.append(current) or current)
    captured[0].resources.clear()
    assert len(store.get("demo").resources) == 1


def test_commit_none_deletes(store):
    store.commit("demo", lambda _current: _state("demo"))
    store.commit("demo", lambda _current: None)
    assert store.get("demo") is None
    assert not (store.state_dir / "demo.json").exists()


def test_remove_absent_is_noop(store):
    store.remove("ghost")
    assert store.get("ghost") is None


def test_write_failure_keeps_previous_state(store):
    store.commit("demo", lambda _current: _state("demo", _record("editor")))
    with patch("workon.state.os.fsync", side_effect=OSError("disk full")):
        with pytest.raises(StoreWriteFailure):
            store.commit("demo", lambda _current: _state("demo"))
    loaded = store.get("demo")
    assert [r.resource_id for r in loaded.resources] == ["editor"]
    assert not list(store.state_dir.glob("*.tmp"))


def test_upsert_keeps_one_record_per_resource():
    state = _state("demo", _record("editor", host_entity_id="old"))
    state.upsert(_record("editor", host_entity_id="new"))
    state.upsert(_record("shell"))
    assert [r.host_entity_id for r in state.resources] == ["new", "win-shell"]
    assert len([r for r in state.live() if r.resource_id == "editor"]) == 1


def test_removable_requires_stopped_without_live():
    state = _state("demo", _record("editor"))
    assert not state.removable
    state.status = ProjectStatus.STOPPED
    assert not state.removable
    state.resources[0].status = ResourceStatus.STOPPED
    assert state.removable


def test_projects_do_not_share_documents(store):
    store.commit("alpha", lambda _current: _state("alpha"))
    store.commit("beta", lambda _current: _state("beta"))
    store.remove("alpha")
    assert store.get("beta") is not None
    assert sorted(p.name for p in store.state_dir.glob("*.json")) == ["beta.json"]


def test_exclusive_rejects_second_holder(store):
    with store.exclusive("demo"):
        other = StateStore(store.state_dir)
        with pytest.raises(ProjectBusy):
            with other.exclusive("demo"):
                pass
    with store.exclusive("demo"):
        pass


def test_invalid_project_name(store):
    with pytest.raises(ValueError):
        store.get("../etc")
