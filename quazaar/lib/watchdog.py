"""Systemd notify integration for the daemon.

READY=1 once the server is listening, WATCHDOG=1 every *interval* seconds
while it runs, STOPPING=1 when shutdown begins.  Every call silently no-ops
when NOTIFY_SOCKET is unset (dev mode, tests, non-systemd hosts).

Usage:
    from quazaar.lib.watchdog import watchdog_loop
    task = asyncio.create_task(watchdog_loop(stop_event))
"""

import asyncio
import logging
import os
import socket

log = logging.getLogger(__name__)


def sd_notify(msg: str) -> bool:
    """Send *msg* to the systemd notify socket.  True if it was sent."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
        return True
    except OSError as e:
        log.debug("sd_notify(%s) failed: %s", msg.split("=")[0], e)
        return False
    finally:
        sock.close()


async def watchdog_loop(stop: asyncio.Event, interval: float = 20):
    """Heartbeat until *stop* is set.  Run as its own task."""
    sd_notify("READY=1")
    log.info("Watchdog started (interval=%ss)", interval)
    while not stop.is_set():
        sd_notify("WATCHDOG=1")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
    sd_notify("STOPPING=1")
