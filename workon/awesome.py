"""
workon.awesome
--------------

``Host`` backend for the awesome window manager.

Window-manager calls are Lua snippets piped through ``awesome-client``;
processes are launched directly from Python (own session, so they outlive
the CLI) and the correlation token is read back from
``/proc/<pid>/environ``.  Ownership is written as X properties on the
client window, which survive an awesome restart.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import shlex
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

from .constants import AWESOME_CLIENT, OWNERSHIP_PROPERTIES
from .errors import HostError
from .host import EntityPredicate, Host, HostEntity, SpawnTicket, TagId

_LOG = logging.getLogger(__name__)

_CLIENT_TIMEOUT = 5.0  # seconds per awesome-client round-trip
_REPLY_RE = re.compile(r'^\s*(string|double|boolean|int32|uint32)\s+"?(.*?)"?\s*$', re.S)

# Registers the ownership X properties; must run before get/set_xproperty.
_REGISTER = "\n".join(
    f'awesome.register_xproperty("{name}", "string")' for name in OWNERSHIP_PROPERTIES
)

_FIND_CLIENT = """
local function find_client(wid)
  for _, c in ipairs(client.get()) do
    if tostring(c.window) == wid then return c end
  end
  return nil
end
"""

_FIND_TAG = """
local function find_tag(spec)
  local s = awful.screen.focused()
  local idx = tonumber(spec)
  if idx then return s.tags[idx] end
  return awful.tag.find_by_name(s, spec)
end
"""


def lua_string(value: str) -> str:
    """Quote *value* as a Lua string literal."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def parse_reply(raw: str) -> str:
    """Extract the payload from an ``awesome-client`` reply line."""
    text = raw.strip()
    if not text:
        return ""
    m = _REPLY_RE.match(text)
    if not m:
        raise HostError(f"unexpected awesome-client reply: {text[:200]}")
    return m.group(2)


def _tag_id(name: str) -> TagId | None:
    if not name:
        return None
    return int(name) if name.isdigit() else name


def parse_entities(payload: str) -> List[HostEntity]:
    """Parse the tab-separated client dump produced by ``list_entities``."""
    entities: List[HostEntity] = []
    for line in payload.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        fields += [""] * (6 - len(fields))
        wid, pid, title, klass, tag, props = fields[:6]
        properties: Dict[str, str] = {}
        for pair in props.split(";"):
            if "=" in pair:
                key, value = pair.split("=", 1)
                properties[key] = value
        entities.append(
            HostEntity(
                entity_id=wid,
                pid=int(pid) if pid.isdigit() else None,
                title=title,
                klass=klass,
                tag=_tag_id(tag),
                properties=properties,
            )
        )
    return entities


def read_proc_environ(pid: int, prefix: str = "WORKON_") -> Dict[str, str]:
    """Environment variables of *pid* starting with *prefix* (empty when unreadable)."""
    try:
        raw = Path(f"/proc/{pid}/environ").read_bytes()
    except OSError:
        return {}
    env: Dict[str, str] = {}
    for item in raw.split(b"\0"):
        key, sep, value = item.decode(errors="replace").partition("=")
        if sep and key.startswith(prefix):
            env[key] = value
    return env


def _read_proc_cwd(pid: int) -> Optional[str]:
    try:
        return os.readlink(f"/proc/{pid}/cwd")
    except OSError:
        return None


def _read_proc_cmdline(pid: int) -> Optional[str]:
    try:
        raw = Path(f"/proc/{pid}/cmdline").read_bytes()
    except OSError:
        return None
    parts = [p.decode(errors="replace") for p in raw.split(b"\0") if p]
    return shlex.join(parts) if parts else None


class AwesomeHost(Host):
    """Talks to a running awesome session through ``awesome-client``."""

    def __init__(self, client_executable: str = AWESOME_CLIENT) -> None:
        self._client = client_executable

    # ---------------- plumbing ---------------- #

    async def _eval(self, lua: str) -> str:
        script = f'local awful = require("awful")\n{_REGISTER}\n{lua}'
        try:
            proc = await asyncio.create_subprocess_exec(
                self._client,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise HostError(f"cannot run {self._client}: {exc}") from exc
        try:
            out, err = await asyncio.wait_for(
                proc.communicate(script.encode()), timeout=_CLIENT_TIMEOUT
            )
        except asyncio.TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            raise HostError("awesome-client timed out") from exc
        if proc.returncode != 0:
            raise HostError(
                f"awesome-client failed ({proc.returncode}): {err.decode().strip()}"
            )
        reply = out.decode()
        _LOG.debug("awesome-client reply: %s", reply.strip())
        if reply.lstrip().startswith("Error"):
            raise HostError(reply.strip())
        return parse_reply(reply)

    # ---------------- tags ---------------- #

    async def get_current_tag(self) -> int:
        reply = await self._eval(
            "local t = awful.screen.focused().selected_tag\n"
            'return t and tostring(t.index) or "1"'
        )
        return int(reply) if reply.isdigit() else 1

    async def list_tags(self) -> List[TagId]:
        reply = await self._eval(
            "local names = {}\n"
            "for _, t in ipairs(awful.screen.focused().tags) do\n"
            "  table.insert(names, t.name)\n"
            "end\n"
            'return table.concat(names, "\\n")'
        )
        return [t for t in (_tag_id(n) for n in reply.splitlines()) if t is not None]

    async def create_tag(self, name: str) -> TagId:
        await self._eval(
            f"awful.tag.add({lua_string(name)}, "
            "{screen = awful.screen.focused(), layout = awful.layout.suit.tile})\n"
            'return "ok"'
        )
        return name

    async def delete_tag(self, tag: TagId) -> None:
        await self._eval(
            f"{_FIND_TAG}\n"
            f"local t = find_tag({lua_string(str(tag))})\n"
            "if t then t:delete() end\n"
            'return "ok"'
        )

    async def assign_entity_to_tag(self, entity_id: str, tag: TagId) -> None:
        reply = await self._eval(
            f"{_FIND_CLIENT}\n{_FIND_TAG}\n"
            f"local c = find_client({lua_string(entity_id)})\n"
            f"local t = find_tag({lua_string(str(tag))})\n"
            'if not c then return "no-client" end\n'
            'if not t then return "no-tag" end\n'
            "c:move_to_tag(t)\n"
            'return "ok"'
        )
        if reply != "ok":
            raise HostError(f"cannot move {entity_id} to tag {tag}: {reply}")

    # ---------------- entities ---------------- #

    async def list_entities(
        self, predicate: Optional[EntityPredicate] = None
    ) -> List[HostEntity]:
        keys = ", ".join(lua_string(k) for k in OWNERSHIP_PROPERTIES)
        payload = await self._eval(
            "local function clean(s) return (tostring(s or \"\"):gsub(\"[\\t\\n;=]\", \" \")) end\n"
            "local rows = {}\n"
            "for _, c in ipairs(client.get()) do\n"
            "  local props = {}\n"
            f"  for _, k in ipairs({{{keys}}}) do\n"
            "    local v = c:get_xproperty(k)\n"
            '    if v ~= nil and v ~= "" then table.insert(props, k .. "=" .. clean(v)) end\n'
            "  end\n"
            "  local t = c.first_tag\n"
            "  table.insert(rows, table.concat({tostring(c.window), tostring(c.pid or \"\"),\n"
            '    clean(c.name), clean(c.class), t and t.name or "", table.concat(props, ";")}, "\\t"))\n'
            "end\n"
            'return table.concat(rows, "\\n")'
        )
        entities = parse_entities(payload)
        for entity in entities:
            if entity.pid is not None:
                entity.environ = read_proc_environ(entity.pid)
                entity.cwd = _read_proc_cwd(entity.pid)
                entity.command = _read_proc_cmdline(entity.pid)
        if predicate is not None:
            entities = [e for e in entities if predicate(e)]
        return entities

    async def spawn(self, command: str, env: Dict[str, str], workdir: str | None) -> SpawnTicket:
        """Launch *command* detached from the CLI's session."""
        argv = shlex.split(command)
        if not argv:
            raise HostError("no command to execute")
        cwd = os.path.expanduser(workdir) if workdir else None
        try:
            proc = subprocess.Popen(
                argv,
                cwd=cwd,
                env={**os.environ, **env},
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as exc:
            raise HostError(f"{argv[0]}: {exc.strerror or exc}") from exc
        return SpawnTicket(env.get("WORKON_TOKEN", str(proc.pid)), proc.pid)

    async def set_entity_property(self, entity_id: str, key: str, value: str) -> None:
        reply = await self._eval(
            f"{_FIND_CLIENT}\n"
            f"local c = find_client({lua_string(entity_id)})\n"
            'if not c then return "no-client" end\n'
            f"c:set_xproperty({lua_string(key)}, {lua_string(value)})\n"
            'return "ok"'
        )
        if reply != "ok":
            raise HostError(f"cannot set {key} on {entity_id}: {reply}")

    async def get_entity_property(self, entity_id: str, key: str) -> Optional[str]:
        reply = await self._eval(
            f"{_FIND_CLIENT}\n"
            f"local c = find_client({lua_string(entity_id)})\n"
            'if not c then return "" end\n'
            f'return c:get_xproperty({lua_string(key)}) or ""'
        )
        return reply or None

    async def close_entity(self, entity_id: str) -> None:
        await self._eval(
            f"{_FIND_CLIENT}\n"
            f"local c = find_client({lua_string(entity_id)})\n"
            "if c then c:kill() end\n"
            'return "ok"'
        )

    # ---------------- processes ---------------- #

    async def send_signal(self, pid: int, signum: int) -> None:
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            pass
        except PermissionError as exc:
            raise HostError(f"cannot signal pid {pid}: {exc}") from exc

    async def is_alive(self, pid: int) -> bool:
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        # Reap our own children so they do not linger as zombies.
        with contextlib.suppress(ChildProcessError):
            reaped, _ = os.waitpid(pid, os.WNOHANG)
            if reaped == pid:
                return False
        return True

    # ---------------- notifications ---------------- #

    async def notify(self, message: str, level: str = "info") -> None:
        preset = "critical" if level == "error" else "normal"
        await self._eval(
            'local naughty = require("naughty")\n'
            f'naughty.notify({{title = "workon", text = {lua_string(message)}, '
            f"preset = naughty.config.presets.{preset}}})\n"
            'return "ok"'
        )
