# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Media player snapshot via playerctl (MPRIS).

One playerctl call fetches everything, fields joined by ``|||``:
title, artUrl, artist, album, position, length, status, playerName.
Position and length come back in microseconds and are reported in seconds.
"""

import logging

from ..lib.artwork import ArtworkResolver
from ..lib.errors import SourceUnavailable
from . import run_tool

log = logging.getLogger(__name__)

SEPARATOR = "|||"
FIELDS = ("title", "artwork", "artist", "album", "position", "length", "status", "player")
METADATA_FORMAT = SEPARATOR.join([
    "{{title}}",
    "{{mpris:artUrl}}",
    "{{artist}}",
    "{{album}}",
    "{{position}}",
    "{{mpris:length}}",
    "{{status}}",
    "{{playerName}}",
])


def _micros_to_seconds(value: str) -> float:
    try:
        return round(int(value) / 1_000_000, 3)
    except ValueError:
        return 0.0


def parse_metadata(output: str) -> dict:
    """Parse one line of ``playerctl metadata --format`` output.

    Raises SourceUnavailable when the line doesn't carry all eight fields
    (playerctl prints nothing useful when no player is running).
    """
    parts = [p.strip() for p in output.strip().split(SEPARATOR)]
    if len(parts) < len(FIELDS):
        raise SourceUnavailable("no player metadata")

    info = dict(zip(FIELDS, parts))
    info["position"] = _micros_to_seconds(info["position"])
    info["length"] = _micros_to_seconds(info["length"])
    return info


class MediaSource:

    def __init__(self, artwork: ArtworkResolver | None = None, player: str | None = None,
                 runner=run_tool):
        self.artwork = artwork
        self.player = player
        self._run = runner

    def _playerctl(self, *args) -> list[str]:
        argv = ["playerctl"]
        if self.player:
            argv += ["--player", self.player]
        return argv + list(args)

    async def poll(self) -> dict:
        output = await self._run(self._playerctl("metadata", "--format", METADATA_FORMAT))
        info = parse_metadata(output)
        art_url = info["artwork"]
        info["artwork"] = await self.artwork.resolve(art_url) if self.artwork else (art_url or None)
        return info

    async def players(self) -> list[str]:
        """Names of every running MPRIS player."""
        output = await self._run(["playerctl", "--list-all"])
        return [line.strip() for line in output.splitlines() if line.strip()]
