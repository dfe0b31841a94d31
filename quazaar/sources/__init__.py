"""
Sources — things that know about the host.

A source does NOT talk to clients.  It answers one question when polled
(``await source.poll()``) by shelling out to the usual Linux tools, and
returns a JSON-ready payload.  If the tool is missing or has nothing to say
(no media player running, Bluetooth off) it raises SourceUnavailable and the
poller simply tries again next tick.

Current sources:
  media.py      — playerctl metadata + artwork            → status "player"
  bluetooth.py  — bluetoothctl connected devices/battery  → status "bluetooth"
  wifi.py       — nmcli / iw / sysfs link info + speed    → status "wifi"
"""

from ..lib.commands import run_process
from ..lib.errors import ExecutionError, SourceUnavailable

TOOL_TIMEOUT = 3.0


async def run_tool(argv, timeout: float = TOOL_TIMEOUT) -> str:
    """run_process() for sources: any failure becomes SourceUnavailable."""
    try:
        return await run_process(argv, timeout=timeout)
    except ExecutionError as e:
        raise SourceUnavailable(f"{argv[0]}: {e}") from e
