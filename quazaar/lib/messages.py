# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Wire protocol — JSON text frames over the WebSocket.

Client → server:
    {"command": "next"}
    {"command": "volume", "percent": 40}
    {"command": "seek", "params": {"offset": -10}}

Server → client:
    {"status": "player",    "data": {...media snapshot...}}
    {"status": "bluetooth", "data": [...devices...]}
    {"status": "wifi",      "data": {...link info...}}
    {"status": "success",   "command": "next"}
    {"status": "error",     "message": "unknown command: reboot"}
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import CommandParseError


class MessageStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PLAYER = "player"
    BLUETOOTH = "bluetooth"
    WIFI = "wifi"


SNAPSHOT_STATUSES = (MessageStatus.PLAYER, MessageStatus.BLUETOOTH, MessageStatus.WIFI)


@dataclass(frozen=True)
class ServerMessage:
    """Outbound envelope.

    Built once per broadcast and shared by reference across every session
    queue, so nothing in it may be session-specific or mutated after
    construction.
    """

    status: MessageStatus
    message: str | None = None
    command: str | None = None
    data: Any = None

    @classmethod
    def success(cls, command: str, message: str | None = None, data: Any = None):
        return cls(MessageStatus.SUCCESS, message=message, command=command, data=data)

    @classmethod
    def error(cls, message: str, command: str | None = None):
        return cls(MessageStatus.ERROR, message=message, command=command)

    @classmethod
    def snapshot(cls, status: MessageStatus, data: Any):
        status = MessageStatus(status)
        if status not in SNAPSHOT_STATUSES:
            raise ValueError(f"{status.value} is not a snapshot status")
        return cls(status, data=data)

    def to_dict(self) -> dict:
        out = {"status": self.status.value}
        if self.message is not None:
            out["message"] = self.message
        if self.command is not None:
            out["command"] = self.command
        if self.data is not None:
            out["data"] = self.data
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass(frozen=True)
class ClientCommand:
    name: str
    params: dict = field(default_factory=dict)

    def param(self, key: str, default=None):
        return self.params.get(key, default)


def parse_command(raw: str | bytes) -> ClientCommand:
    """Validate one inbound frame into a ClientCommand.

    Raises CommandParseError for anything that is not
    ``{"command": "<non-empty string>", ...}``.  Extra top-level keys become
    params; a nested ``"params"`` object is merged on top of them.
    """
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise CommandParseError("Invalid JSON format") from None

    if not isinstance(msg, dict):
        raise CommandParseError("Command must be a JSON object")

    name = msg.get("command")
    if name is None:
        raise CommandParseError("Missing 'command' field")
    if not isinstance(name, str):
        raise CommandParseError("'command' must be a string")
    if not name.strip():
        raise CommandParseError("'command' must not be empty")

    params = {k: v for k, v in msg.items() if k not in ("command", "params")}
    nested = msg.get("params")
    if nested is not None:
        if not isinstance(nested, dict):
            raise CommandParseError("'params' must be an object")
        params.update(nested)
    return ClientCommand(name, params)
