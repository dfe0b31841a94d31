# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Quazaar — local-network remote control daemon.

One process, one port.  Browsers connect to the WebSocket endpoint and get a
live feed of host state (what the media player is doing, which Bluetooth
devices are connected, how the Wi-Fi link looks), and can send back a small
allowlisted set of commands (transport controls, pinned app launches).

Layout:
  lib/       — broadcast core: hub, sessions, pollers, command dispatch
  sources/   — snapshot sources wrapping playerctl, bluetoothctl, nmcli
  server.py  — aiohttp application + daemon lifecycle (``quazaar`` command)
"""

__version__ = "0.4.0"
