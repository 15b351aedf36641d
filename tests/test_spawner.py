"""
Tests for the reuse-vs-spawn decision.
"""

import dataclasses
from unittest.mock import patch

import pytest

from workon.constants import ENV_PROJECT, ENV_RESOURCE_ID, ENV_TOKEN, PROP_PROJECT
from workon.errors import SpawnFailure
from workon.host import HostEntity, MemoryHost
from workon.model import Project
from workon.spawner import acquire, build_command, build_env, check_executable, matches
from workon.tags import ResolvedPlacement

pytestmark = pytest.mark.unit


def _spec(**data):
    data.setdefault("id", "r")
    data.setdefault("cmd", "app")
    return Project.from_dict({"name": "demo", "resources": [data]}).resources[0]


def test_build_command_quotes_args_and_urls():
    spec = _spec(cmd="firefox --new-window", args=["-P", "work profile"], urls=["https://a.b/?q=1"])
    assert build_command(spec) == "firefox --new-window -P 'work profile' 'https://a.b/?q=1'"
    assert build_command(_spec(cmd="nvim")) == "nvim"


def test_build_env_injects_correlation_variables():
    env = build_env("demo", _spec(env={"EDITOR": "nvim"}), "tok")
    assert env == {
        "EDITOR": "nvim",
        ENV_PROJECT: "demo",
        ENV_RESOURCE_ID: "r",
        ENV_TOKEN: "tok",
    }


def test_check_executable_missing_program():
    with pytest.raises(SpawnFailure, match="command not found"):
        check_executable(_spec(cmd="missing-editor --flag"))


def test_check_executable_missing_path(tmp_path):
    with pytest.raises(SpawnFailure, match="No such file or directory"):
        check_executable(_spec(cmd=str(tmp_path / "nope")))


def test_check_executable_not_executable(tmp_path):
    script = tmp_path / "run.sh"
    script.write_text("#!/bin/sh\n")
    script.chmod(0o644)
    with patch("workon.spawner.os.access", return_value=False):
        with pytest.raises(SpawnFailure, match="Permission denied"):
            check_executable(_spec(cmd=str(script)))


def test_check_executable_unbalanced_quotes():
    with pytest.raises(SpawnFailure, match="invalid command"):
        check_executable(_spec(cmd="echo 'oops"))


@pytest.mark.parametrize(
    "reuse, entity, expected",
    [
        (
            {"match": "title", "value": "Inbox"},
            HostEntity("w1", title="Inbox - Mail"),
            True,
        ),
        ({"match": "title"}, HostEntity("w1", title="something else"), False),
        ({"match": "class", "value": "Firefox"}, HostEntity("w1", klass="firefox"), True),
        ({"match": "command"}, HostEntity("w1", command="app --x"), True),
        (True, HostEntity("w1", cwd="/work/proj", command="app"), True),
        (True, HostEntity("w1", cwd="/work/proj", command="other"), False),
        (True, HostEntity("w1", cwd="/elsewhere", command="app"), False),
    ],
)
def test_matches(reuse, entity, expected):
    spec = _spec(reuse=reuse, dir="/work/proj")
    assert matches(spec, entity) is expected


def test_always_new_never_matches():
    assert not matches(_spec(), HostEntity("w1", title="r", command="app"))


@pytest.mark.parametrize("reuse", ["class", "cwd"])
def test_unparsable_command_never_matches(reuse):
    spec = dataclasses.replace(_spec(reuse=reuse, dir="/work"), command="vim \"unterminated")
    entity = HostEntity("w1", title="vim", klass="vim", command="vim", cwd="/work")
    assert not matches(spec, entity)


@pytest.mark.asyncio
async def test_acquire_spawns_with_token():
    host = MemoryHost()
    spec = _spec(cmd="alacritty", dir="/work")
    handle = await acquire(host, "demo", spec, ResolvedPlacement(3), [])
    assert not handle.reused
    assert handle.pid == 1000
    assert host.spawned == ["alacritty"]
    entity = (await host.list_entities())[0]
    assert entity.environ[ENV_TOKEN] == handle.token
    assert entity.cwd == "/work"


@pytest.mark.asyncio
async def test_acquire_reuses_matching_entity():
    host = MemoryHost()
    existing = host.add_entity(pid=77, title="Inbox", command="mail")
    spec = _spec(cmd="mail", reuse={"match": "title", "value": "Inbox"})
    claimed = set()
    handle = await acquire(host, "demo", spec, ResolvedPlacement(1), [existing], claimed)
    assert handle.reused
    assert handle.entity is existing
    assert claimed == {existing.entity_id}
    assert host.spawned == []


@pytest.mark.asyncio
async def test_acquire_skips_claimed_and_owned_entities():
    host = MemoryHost()
    claimed_entity = host.add_entity(title="Inbox")
    owned = host.add_entity(title="Inbox", properties={PROP_PROJECT: "other"})
    spec = _spec(cmd="mail", reuse={"match": "title", "value": "Inbox"})
    handle = await acquire(
        host, "demo", spec, ResolvedPlacement(1), [claimed_entity, owned], {claimed_entity.entity_id}
    )
    assert not handle.reused
    assert host.spawned == ["mail"]


@pytest.mark.asyncio
async def test_acquire_host_refusal_is_spawn_failure():
    host = MemoryHost(failing_commands=("broken",))
    with pytest.raises(SpawnFailure) as excinfo:
        await acquire(host, "demo", _spec(id="b", cmd="broken-app"), ResolvedPlacement(1), [])
    assert excinfo.value.resource_id == "b"
    assert "refused" in excinfo.value.reason


@pytest.mark.asyncio
async def test_acquire_missing_command_never_spawns():
    host = MemoryHost()
    with pytest.raises(SpawnFailure):
        await acquire(host, "demo", _spec(cmd="missing-tool"), ResolvedPlacement(1), [])
    assert host.spawned == []
