# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Wi-Fi link status via NetworkManager (nmcli), iw and sysfs counters.

  nmcli -t dev wifi            → active SSID, signal, frequency, interface
  nmcli -t connection show     → security (key-mgmt) and IPv4 address
  iw dev <if> link             → tx bitrate (link speed)
  /sys/class/net/<if>/statistics/{rx,tx}_bytes
                               → throughput since the previous poll

Not being connected is a valid snapshot (``connected: false``); only nmcli
itself failing makes the source unavailable.
"""

import logging
import os
import re
import time

from ..lib.errors import SourceUnavailable
from . import run_tool

log = logging.getLogger(__name__)

SYSFS_NET = "/sys/class/net"
BITRATE_RE = re.compile(r"tx bitrate:\s*([\d.]+)")
FREQ_RE = re.compile(r"(\d+)")


def split_terse(line: str) -> list[str]:
    """Split an ``nmcli -t`` line on ':' honouring ``\\:`` and ``\\\\`` escapes."""
    fields, current, escaped = [], [], False
    for ch in line:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == ":":
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
    fields.append("".join(current))
    return fields


def frequency_band(freq: str) -> str:
    """``5180 MHz`` → ``5 GHz``.  Unparseable input is passed through."""
    match = FREQ_RE.search(freq or "")
    if not match:
        return freq or ""
    mhz = int(match.group(1))
    if mhz < 3000:
        return "2.4 GHz"
    if mhz < 5925:
        return "5 GHz"
    return "6 GHz"


def new_snapshot() -> dict:
    return {
        "ssid": "",
        "signal_strength": 0,
        "link_speed": 0,
        "frequency": "",
        "security": "",
        "ip_address": "",
        "connected": False,
        "download_speed": 0.0,
        "upload_speed": 0.0,
        "interface": "",
        "unit_of_speed": "Mbps",
    }


def parse_active_network(output: str, info: dict) -> bool:
    """Fill ssid/signal/frequency/interface from ``dev wifi`` output."""
    for line in output.splitlines():
        parts = split_terse(line.strip())
        if len(parts) < 5 or parts[0] != "yes":
            continue
        info["connected"] = True
        info["ssid"] = parts[1]
        try:
            info["signal_strength"] = max(0, min(100, int(parts[2])))
        except ValueError:
            pass
        info["frequency"] = frequency_band(parts[3])
        info["interface"] = parts[4]
        return True
    return False


def parse_connection_details(output: str, info: dict):
    for line in output.splitlines():
        parts = split_terse(line.strip())
        if len(parts) < 2:
            continue
        key, value = parts[0].strip(), parts[1].strip()
        if key == "802-11-wireless-security.key-mgmt":
            info["security"] = value.upper() if value and value != "--" else "Open"
        elif key.startswith("IP4.ADDRESS") and value and value != "--":
            info["ip_address"] = value.split("/")[0]


def parse_link_speed(output: str) -> int:
    match = BITRATE_RE.search(output)
    return int(float(match.group(1))) if match else 0


class WifiSource:

    def __init__(self, runner=run_tool, sysfs: str = SYSFS_NET, clock=time.monotonic):
        self._run = runner
        self.sysfs = sysfs
        self._clock = clock
        # previous counter sample: (interface, rx_bytes, tx_bytes, monotonic time)
        self._last_sample: tuple | None = None

    async def poll(self) -> dict:
        info = new_snapshot()
        output = await self._run(["nmcli", "-t", "-f", "ACTIVE,SSID,SIGNAL,FREQ,DEVICE", "dev", "wifi"])
        if not parse_active_network(output, info):
            self._last_sample = None
            return info

        await self._connection_details(info)
        try:
            link = await self._run(["iw", "dev", info["interface"], "link"])
            info["link_speed"] = parse_link_speed(link)
        except SourceUnavailable as e:
            log.debug("iw link failed: %s", e)

        info["download_speed"], info["upload_speed"] = self.throughput(info["interface"])
        return info

    async def _connection_details(self, info: dict):
        try:
            active = await self._run(["nmcli", "-t", "-f", "NAME,DEVICE", "connection", "show", "--active"])
        except SourceUnavailable as e:
            log.debug("nmcli connection show failed: %s", e)
            return
        name = None
        for line in active.splitlines():
            parts = split_terse(line.strip())
            if len(parts) >= 2 and parts[1] == info["interface"]:
                name = parts[0]
                break
        if not name:
            return
        try:
            details = await self._run([
                "nmcli", "-t", "-f", "802-11-wireless-security.key-mgmt,IP4.ADDRESS",
                "connection", "show", name,
            ])
        except SourceUnavailable as e:
            log.debug("nmcli details for %s failed: %s", name, e)
            return
        parse_connection_details(details, info)

    def _read_counter(self, interface: str, name: str) -> int:
        with open(os.path.join(self.sysfs, interface, "statistics", name)) as f:
            return int(f.read().strip())

    def throughput(self, interface: str) -> tuple[float, float]:
        """Mbps down/up since the previous call for the same interface.

        The first sample (or an interface change, or a counter reset) reports 0.
        """
        try:
            rx = self._read_counter(interface, "rx_bytes")
            tx = self._read_counter(interface, "tx_bytes")
        except (OSError, ValueError):
            return 0.0, 0.0

        now = self._clock()
        last, self._last_sample = self._last_sample, (interface, rx, tx, now)
        if last is None or last[0] != interface:
            return 0.0, 0.0
        _, last_rx, last_tx, last_time = last
        elapsed = now - last_time
        if elapsed <= 0 or rx < last_rx or tx < last_tx:
            return 0.0, 0.0
        down = (rx - last_rx) * 8 / elapsed / 1_000_000
        up = (tx - last_tx) * 8 / elapsed / 1_000_000
        return round(down, 2), round(up, 2)
