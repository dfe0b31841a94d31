# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Connected Bluetooth devices via bluetoothctl.

``bluetoothctl devices Connected`` lists them, one ``bluetoothctl info <MAC>``
per device fills in battery and icon.  Battery values are -1 when the device
doesn't report one.

Earbuds: BlueZ only exposes a combined battery for most of them.  When
``info`` carries several Battery Percentage lines (labelled, or just in
left/right/case order) they are split out; for Galaxy Buds the
``galaxybudsclient`` CLI is asked as well if it is installed.
"""

import logging
import re

from ..lib.errors import SourceUnavailable
from . import run_tool

log = logging.getLogger(__name__)

NO_BATTERY = -1

BATTERY_RE = re.compile(r"Battery Percentage:[^(]*\((\d+)\)")
HEX_BATTERY_RE = re.compile(r"Battery Percentage: 0x[0-9a-fA-F]+ \((\d+)\)")
ICON_RE = re.compile(r"^\s*Icon:\s*(.+)$", re.MULTILINE)
CONNECTED_RE = re.compile(r"^\s*Connected:\s*(\w+)", re.MULTILINE)
PERCENT_RE = re.compile(r"(\d+)\s*%?")


def new_device(mac: str, name: str) -> dict:
    return {
        "name": name,
        "mac": mac,
        "battery": NO_BATTERY,
        "battery_left": NO_BATTERY,
        "battery_right": NO_BATTERY,
        "battery_case": NO_BATTERY,
        "icon": "bluetooth",
        "connected": True,
    }


def parse_device_list(output: str) -> list[tuple[str, str]]:
    """``Device AA:BB:CC:DD:EE:FF Some Name`` lines → [(mac, name)]."""
    devices = []
    for line in output.splitlines():
        parts = line.strip().split(" ", 2)
        if len(parts) < 3 or parts[0] != "Device":
            continue
        devices.append((parts[1], parts[2].strip()))
    return devices


def apply_info(device: dict, info: str):
    """Fill battery/icon/connected fields of *device* from ``bluetoothctl info``."""
    match = BATTERY_RE.search(info)
    if match:
        device["battery"] = int(match.group(1))

    labelled = False
    for line in info.splitlines():
        if "Battery Percentage" not in line:
            continue
        lower = line.lower()
        match = BATTERY_RE.search(line)
        if not match:
            continue
        labelled = labelled or any(side in lower for side in ("left", "right", "case"))
        if "left" in lower:
            device["battery_left"] = int(match.group(1))
        elif "right" in lower:
            device["battery_right"] = int(match.group(1))
        elif "case" in lower:
            device["battery_case"] = int(match.group(1))

    # Unlabelled repeats: assume left, right, case
    readings = [] if labelled else HEX_BATTERY_RE.findall(info)
    if len(readings) >= 2:
        device["battery_left"] = int(readings[0])
        device["battery_right"] = int(readings[1])
    if len(readings) >= 3:
        device["battery_case"] = int(readings[2])

    match = ICON_RE.search(info)
    if match:
        device["icon"] = match.group(1).strip()

    match = CONNECTED_RE.search(info)
    if match:
        device["connected"] = match.group(1).lower() == "yes"


def apply_buds_client(device: dict, output: str):
    """Parse ``galaxybudsclient --get-battery`` output (``Left: 80%`` ...)."""
    for line in output.splitlines():
        lower = line.lower()
        match = PERCENT_RE.search(line)
        if not match:
            continue
        if "left" in lower:
            device["battery_left"] = int(match.group(1))
        elif "right" in lower:
            device["battery_right"] = int(match.group(1))
        elif "case" in lower:
            device["battery_case"] = int(match.group(1))


def _is_buds(name: str) -> bool:
    return "buds" in name.lower()


class BluetoothSource:

    def __init__(self, runner=run_tool):
        self._run = runner

    async def poll(self) -> list[dict]:
        output = await self._run(["bluetoothctl", "devices", "Connected"])
        devices = []
        for mac, name in parse_device_list(output):
            device = new_device(mac, name)
            try:
                apply_info(device, await self._run(["bluetoothctl", "info", mac]))
            except SourceUnavailable as e:
                log.debug("bluetoothctl info %s failed: %s", mac, e)

            if _is_buds(name) and device["battery_left"] == NO_BATTERY:
                try:
                    apply_buds_client(device, await self._run(
                        ["galaxybudsclient", "--address", mac, "--get-battery"]))
                except SourceUnavailable:
                    pass  # optional tool
            devices.append(device)
        return devices
