"""
Tests for the awesome backend helpers and its Lua plumbing.

No window manager is needed: ``AwesomeHost._eval`` is patched and only the
generated Lua and the parsing of replies are checked.
"""

import os
import signal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from workon.awesome import (
    AwesomeHost,
    lua_string,
    parse_entities,
    parse_reply,
    read_proc_environ,
)
from workon.errors import HostError

pytestmark = pytest.mark.unit


def test_lua_string_escapes():
    assert lua_string('say "hi"\n') == '"say \\"hi\\"\\n"'
    assert lua_string("back\\slash") == '"back\\\\slash"'


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('   string "ok"\n', "ok"),
        ("   double 3\n", "3"),
        ("", ""),
    ],
)
def test_parse_reply(raw, expected):
    assert parse_reply(raw) == expected


def test_parse_reply_rejects_garbage():
    with pytest.raises(HostError):
        parse_reply("<<garbage>>")


def test_parse_entities():
    payload = (
        "1234\t99\tnvim - main.py\tAlacritty\t3\tworkon_project=demo;workon_resource_id=editor\n"
        "5678\t\tFirefox\tfirefox\tdocs\t\n"
    )
    first, second = parse_entities(payload)
    assert first.entity_id == "1234"
    assert first.pid == 99
    assert first.tag == 3
    assert first.properties == {"workon_project": "demo", "workon_resource_id": "editor"}
    assert second.pid is None
    assert second.tag == "docs"
    assert second.properties == {}


def test_read_proc_environ_filters_prefix(tmp_path):
    environ = b"PATH=/bin\0WORKON_TOKEN=abc\0WORKON_PROJECT=demo\0"
    with patch("workon.awesome.Path.read_bytes", return_value=environ):
        assert read_proc_environ(1) == {"WORKON_TOKEN": "abc", "WORKON_PROJECT": "demo"}


def test_read_proc_environ_unreadable():
    with patch("workon.awesome.Path.read_bytes", side_effect=PermissionError):
        assert read_proc_environ(1) == {}


@pytest.mark.asyncio
async def test_get_current_tag():
    host = AwesomeHost()
    with patch.object(host, "_eval", AsyncMock(return_value="4")) as mock_eval:
        assert await host.get_current_tag() == 4
    assert "selected_tag" in mock_eval.call_args[0][0]


@pytest.mark.asyncio
async def test_list_tags_mixes_numbers_and_names():
    host = AwesomeHost()
    with patch.object(host, "_eval", AsyncMock(return_value="1\n2\ndocs")):
        assert await host.list_tags() == [1, 2, "docs"]


@pytest.mark.asyncio
async def test_assign_entity_reports_missing_tag():
    host = AwesomeHost()
    with patch.object(host, "_eval", AsyncMock(return_value="no-tag")):
        with pytest.raises(HostError, match="no-tag"):
            await host.assign_entity_to_tag("1234", "docs")


@pytest.mark.asyncio
async def test_set_entity_property_quotes_values():
    host = AwesomeHost()
    with patch.object(host, "_eval", AsyncMock(return_value="ok")) as mock_eval:
        await host.set_entity_property("1234", "workon_project", 'my "proj"')
    lua = mock_eval.call_args[0][0]
    assert 'c:set_xproperty("workon_project", "my \\"proj\\"")' in lua


@pytest.mark.asyncio
async def test_list_entities_enriches_from_proc():
    host = AwesomeHost()
    payload = "1234\t99\tnvim\tAlacritty\t3\tworkon_project=demo"
    with (
        patch.object(host, "_eval", AsyncMock(return_value=payload)),
        patch("workon.awesome.read_proc_environ", return_value={"WORKON_TOKEN": "t"}),
        patch("workon.awesome._read_proc_cwd", return_value="/work"),
        patch("workon.awesome._read_proc_cmdline", return_value="nvim ."),
    ):
        entities = await host.list_entities(lambda e: e.pid == 99)
    assert len(entities) == 1
    assert entities[0].environ == {"WORKON_TOKEN": "t"}
    assert entities[0].cwd == "/work"
    assert entities[0].command == "nvim ."


@pytest.mark.asyncio
async def test_spawn_detaches_process():
    host = AwesomeHost()
    proc = MagicMock(pid=4321)
    with patch("workon.awesome.subprocess.Popen", return_value=proc) as mock_popen:
        ticket = await host.spawn("nvim 'a b'", {"WORKON_TOKEN": "tok"}, "~/work")
    assert ticket.token == "tok"
    assert ticket.pid == 4321
    args, kwargs = mock_popen.call_args
    assert args[0] == ["nvim", "a b"]
    assert kwargs["start_new_session"] is True
    assert kwargs["cwd"] == os.path.expanduser("~/work")
    assert kwargs["env"]["WORKON_TOKEN"] == "tok"


@pytest.mark.asyncio
async def test_spawn_failure_is_host_error():
    host = AwesomeHost()
    with patch("workon.awesome.subprocess.Popen", side_effect=FileNotFoundError(2, "No such file or directory")):
        with pytest.raises(HostError, match="No such file or directory"):
            await host.spawn("nope", {}, None)


@pytest.mark.asyncio
async def test_send_signal_ignores_dead_process():
    host = AwesomeHost()
    with patch("workon.awesome.os.kill", side_effect=ProcessLookupError) as mock_kill:
        await host.send_signal(1234, signal.SIGTERM)
    mock_kill.assert_called_once_with(1234, signal.SIGTERM)


@pytest.mark.asyncio
async def test_is_alive():
    host = AwesomeHost()
    with patch("workon.awesome.os.kill", side_effect=ProcessLookupError):
        assert await host.is_alive(1234) is False
    with (
        patch("workon.awesome.os.kill", return_value=None),
        patch("workon.awesome.os.waitpid", side_effect=ChildProcessError),
    ):
        assert await host.is_alive(1234) is True


@pytest.mark.asyncio
async def test_eval_reports_missing_client():
    host = AwesomeHost("definitely-not-awesome-client")
    with patch(
        "workon.awesome.asyncio.create_subprocess_exec",
        AsyncMock(side_effect=FileNotFoundError(2, "No such file or directory")),
    ):
        with pytest.raises(HostError, match="cannot run"):
            await host.get_current_tag()
