# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Command dispatch.

A client command name is looked up in a fixed table and turned into an
Action (an argv that was written here or in the config file, never built
from client text).  Anything not in the table is answered with an error and
never reaches the executor.

    player transport   play, pause, player_toggle/play-pause, next/player_next,
                       prev/player_prev/previous, stop,
                       volume_up/player_volume_up, volume_down/player_volume_down
    parameterized      volume {percent}, seek {position} | seek {offset}
    app launches       names from the "apps" config section (+ defaults)
    built-in           ping, player_info, players, commands
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass

from .errors import CommandParseError, ExecutionError, SourceUnavailable
from .messages import ClientCommand, MessageStatus, ServerMessage

log = logging.getLogger(__name__)

PLAYERCTL = "playerctl"
GTK_LAUNCH = "gtk-launch"
COMMAND_TIMEOUT = 5.0

PLAYER_COMMANDS = {
    "play": ("play",),
    "pause": ("pause",),
    "player_toggle": ("play-pause",),
    "play-pause": ("play-pause",),
    "next": ("next",),
    "player_next": ("next",),
    "prev": ("previous",),
    "player_prev": ("previous",),
    "previous": ("previous",),
    "volume_up": ("volume", "0.05+"),
    "player_volume_up": ("volume", "0.05+"),
    "volume_down": ("volume", "0.05-"),
    "player_volume_down": ("volume", "0.05-"),
    "stop": ("stop",),
}

# Pinned launchers.  A list is an argv; a string is a desktop-file id
# started through gtk-launch.
DEFAULT_APPS = {
    "open_firefox": ["firefox", "--new-window"],
    "open_vscode": ["code"],
    "open_files": "org.gnome.Nautilus",
}

LAUNCHED_OK = "Command launched successfully."


@dataclass(frozen=True)
class Action:
    argv: tuple
    detach: bool = False


async def run_process(argv, timeout: float = COMMAND_TIMEOUT) -> str:
    """Run *argv* to completion and return its stripped stdout.

    Raises ExecutionError if it cannot be started, times out, or exits
    non-zero (message is stderr, or the exit status if stderr is empty).
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ExecutionError(f"{argv[0]}: {e.strerror or e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ExecutionError(f"{argv[0]} timed out after {timeout:g}s") from None

    if proc.returncode != 0:
        detail = stderr.decode(errors="replace").strip()
        raise ExecutionError(detail or f"{argv[0]} exited with status {proc.returncode}",
                             proc.returncode)
    return stdout.decode(errors="replace").strip()


class CommandExecutor:
    """Capability the dispatcher runs resolved actions through."""

    async def execute(self, action: Action) -> str:
        raise NotImplementedError


class ProcessExecutor(CommandExecutor):
    """Runs actions as child processes.

    Player actions run to completion (their output is the reply).  Detached
    actions (app launches) are started in their own session and not waited
    for; a background task reaps them when they exit.
    """

    def __init__(self, timeout: float = COMMAND_TIMEOUT):
        self.timeout = timeout
        self._reapers: set[asyncio.Task] = set()

    async def execute(self, action: Action) -> str:
        if action.detach:
            return await self._launch(action.argv)
        return await run_process(action.argv, timeout=self.timeout)

    async def _launch(self, argv) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionError(f"{argv[0]}: {e.strerror or e}") from e
        log.info("Launched %s (pid %d)", argv[0], proc.pid)
        reaper = asyncio.create_task(proc.wait())
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)
        return LAUNCHED_OK


def _number(value, name: str) -> float:
    # bool is an int subclass; {"percent": true} is not a volume
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandParseError(f"'{name}' must be a number")
    try:
        number = float(value)
    except OverflowError:
        raise CommandParseError(f"'{name}' is out of range") from None
    if not math.isfinite(number):
        raise CommandParseError(f"'{name}' is out of range")
    return number


class CommandDispatcher:
    """Resolve ClientCommands against the allowlist and run them.

    *media* is the media snapshot source (for ``player_info``); optional.
    ``dispatch()`` always returns a ServerMessage and never raises.
    """

    def __init__(self, executor: CommandExecutor, apps: dict | None = None, media=None):
        self.executor = executor
        self.media = media
        self.apps: dict[str, Action] = {}
        for name, target in {**DEFAULT_APPS, **(apps or {})}.items():
            if isinstance(target, str):
                self.apps[name] = Action((GTK_LAUNCH, target), detach=True)
            elif target:
                self.apps[name] = Action(tuple(target), detach=True)
        self._builtins = {
            "ping": self._ping,
            "player_info": self._player_info,
            "commands": self._commands,
            "players": self._players,
        }

    @property
    def allowlist(self) -> list[str]:
        names = set(PLAYER_COMMANDS) | {"volume", "seek"} | set(self.apps) | set(self._builtins)
        return sorted(names)

    def resolve(self, command: ClientCommand) -> Action | None:
        """Map a command to its Action.  None if the name is not allowlisted.

        Raises CommandParseError for a known name with bad parameters.
        """
        name = command.name
        if name in PLAYER_COMMANDS:
            return Action((PLAYERCTL,) + PLAYER_COMMANDS[name])
        if name in self.apps:
            return self.apps[name]
        if name == "volume":
            percent = _number(command.param("percent"), "percent")
            if not 0 <= percent <= 100:
                raise CommandParseError("'percent' must be between 0 and 100")
            return Action((PLAYERCTL, "volume", f"{percent / 100:.2f}"))
        if name == "seek":
            if command.param("offset") is not None:
                offset = _number(command.param("offset"), "offset")
                sign = "+" if offset >= 0 else "-"
                return Action((PLAYERCTL, "position", f"{abs(offset):g}{sign}"))
            position = _number(command.param("position"), "position")
            if position < 0:
                raise CommandParseError("'position' must not be negative")
            return Action((PLAYERCTL, "position", f"{position:g}"))
        return None

    async def dispatch(self, command: ClientCommand) -> ServerMessage:
        name = command.name
        try:
            builtin = self._builtins.get(name)
            if builtin is not None:
                return await builtin(command)

            action = self.resolve(command)
            if action is None:
                log.warning("Rejected command not in allowlist: %r", name)
                return ServerMessage.error(f"unknown command: {name}")

            log.info("Running %s: %s", name, " ".join(action.argv))
            output = await self.executor.execute(action)
        except asyncio.CancelledError:
            raise
        except CommandParseError as e:
            return ServerMessage.error(str(e), command=name)
        except ExecutionError as e:
            log.warning("Command %s failed: %s", name, e)
            return ServerMessage.error(str(e), command=name)
        except Exception as e:
            log.exception("Command %s crashed", name)
            return ServerMessage.error(f"internal error: {e}", command=name)

        return ServerMessage.success(name, message=output or None)

    # ── Built-ins ──

    async def _ping(self, command):
        return ServerMessage.success(
            "ping", message="pong",
            data={"timestamp": int(time.time()), "server": "quazaar"})

    async def _player_info(self, command):
        if self.media is None:
            return ServerMessage.error("media source not configured", command="player_info")
        try:
            data = await self.media.poll()
        except SourceUnavailable as e:
            return ServerMessage.error(f"no active player: {e}", command="player_info")
        return ServerMessage.snapshot(MessageStatus.PLAYER, data)

    async def _commands(self, command):
        return ServerMessage.success("commands", data=self.allowlist)

    async def _players(self, command):
        if self.media is None:
            return ServerMessage.error("media source not configured", command="players")
        try:
            names = await self.media.players()
        except SourceUnavailable as e:
            return ServerMessage.error(str(e), command="players")
        return ServerMessage.success("players", data=names)
