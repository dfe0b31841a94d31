#!/usr/bin/env python3
# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Quazaar daemon (``quazaar``)

Serves on one port:
  GET /ws        — WebSocket: status feed + command channel
  GET /status    — JSON diagnostics (clients, pollers, drops)
  GET /          — the bundled remote-control page
  GET /static/*  — static files

Pollers (media 1s, bluetooth 5s, wifi 3s by default) publish snapshots to the
hub, which fans them out to every connected client.

Usage:
    quazaar                      # config from the usual search path
    quazaar --config ./dev.json --debug
    QUAZAAR_PORT=9000 quazaar
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from aiohttp import web

from . import __version__
from .lib.artwork import ArtworkResolver
from .lib.commands import CommandDispatcher, ProcessExecutor
from .lib.config import Settings, load_settings
from .lib.errors import ConfigError
from .lib.handler import ConnectionHandler
from .lib.hub import BroadcastHub
from .lib.messages import MessageStatus
from .lib.poller import Poller, SnapshotPublisher
from .lib.watchdog import watchdog_loop
from .sources.bluetooth import BluetoothSource
from .sources.media import MediaSource
from .sources.wifi import WifiSource

log = logging.getLogger("quazaar")

BUNDLED_WEB = os.path.join(os.path.dirname(os.path.abspath(__file__)), "web")

HUB_KEY = web.AppKey("hub", BroadcastHub)
POLLERS_KEY = web.AppKey("pollers", list)


@web.middleware
async def no_cache(request: web.Request, handler):
    """Kiosk browsers must never serve a stale page or script."""
    resp = await handler(request)
    if not isinstance(resp, web.WebSocketResponse):
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
    return resp


async def handle_status(request: web.Request) -> web.Response:
    hub = request.app[HUB_KEY]
    return web.json_response({
        "version": __version__,
        "clients": hub.count(),
        "broadcasts": hub.broadcasts,
        "drops": hub.drops,
        "sessions": [
            {
                "id": s.id,
                "state": s.state.value,
                "queued": s.outbound.qsize(),
                "sent": s.sent,
                "dropped": s.dropped,
            }
            for s in hub.sessions()
        ],
        "pollers": [
            {
                "name": p.name,
                "interval": p.interval,
                "running": p.running,
                "ticks": p.ticks,
                "failures": p.failures,
            }
            for p in request.app[POLLERS_KEY]
        ],
    })


def build_app(settings: Settings, hub: BroadcastHub, dispatcher: CommandDispatcher,
              publishers=(), pollers=()) -> web.Application:
    """Create the aiohttp application.  Routes only, nothing is started."""
    app = web.Application(middlewares=[no_cache])
    app[HUB_KEY] = hub
    app[POLLERS_KEY] = list(pollers)

    handler = ConnectionHandler(
        hub, dispatcher, publishers,
        queue_size=settings.queue_size, heartbeat=settings.heartbeat)
    app.router.add_get("/ws", handler.handle)
    app.router.add_get("/status", handle_status)

    static_dir = settings.static_dir or BUNDLED_WEB
    index = os.path.join(static_dir, "index.html")

    async def handle_index(request):
        if not os.path.isfile(index):
            raise web.HTTPNotFound(text="no index.html in static_dir")
        return web.FileResponse(index)

    app.router.add_get("/", handle_index)
    if os.path.isdir(static_dir):
        app.router.add_static("/static/", static_dir)
    else:
        log.warning("Static dir %s does not exist — serving /ws and /status only", static_dir)
    return app


class Daemon:
    """Owns the hub, the pollers and the HTTP runner for one process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.hub = BroadcastHub()
        self.stop_event = asyncio.Event()
        self.artwork = ArtworkResolver(
            cache_size=settings.artwork_cache_size, max_bytes=settings.artwork_max_bytes)
        self.media = MediaSource(self.artwork)

        sources = {
            "media": (MessageStatus.PLAYER, self.media),
            "bluetooth": (MessageStatus.BLUETOOTH, BluetoothSource()),
            "wifi": (MessageStatus.WIFI, WifiSource()),
        }
        self.publishers: list[SnapshotPublisher] = []
        self.pollers: list[Poller] = []
        for name, (status, source) in sources.items():
            interval = settings.intervals.get(name)
            if not interval:
                log.info("Poller %s disabled", name)
                continue
            publisher = SnapshotPublisher(self.hub, status, source)
            self.publishers.append(publisher)
            # One shared stop event: every poller lives exactly as long as the process
            self.pollers.append(Poller(name, interval, publisher, self.stop_event))

        self.dispatcher = CommandDispatcher(ProcessExecutor(), apps=settings.apps, media=self.media)
        self.app = build_app(settings, self.hub, self.dispatcher, self.publishers, self.pollers)
        self._runner: web.AppRunner | None = None
        self._watchdog: asyncio.Task | None = None

    async def start(self):
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await site.start()
        log.info("Quazaar %s listening on ws://%s:%d/ws",
                 __version__, self.settings.host, self.settings.port)

        for poller in self.pollers:
            poller.start()
        self._watchdog = asyncio.create_task(watchdog_loop(self.stop_event))

    async def stop(self):
        log.info("Shutting down")
        self.stop_event.set()
        await asyncio.gather(*(p.stop(timeout=5) for p in self.pollers))

        sessions = self.hub.sessions()
        self.hub.close_all()
        for session in sessions:
            await session.close_transport()

        if self._watchdog:
            await self._watchdog
            self._watchdog = None
        await self.artwork.close()
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def run(self):
        """Convenience entry-point: start + wait for signal + stop."""
        await self.start()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.stop_event.set)
        try:
            await self.stop_event.wait()
        finally:
            await self.stop()


def main(argv=None):
    parser = argparse.ArgumentParser(prog="quazaar", description=__doc__.split("\n\n")[0].strip())
    parser.add_argument("--config", help="path to config.json (overrides the search path)")
    parser.add_argument("--debug", action="store_true", help="log at DEBUG level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if args.config:
        os.environ["QUAZAAR_CONFIG"] = args.config

    try:
        settings = load_settings()
    except ConfigError as e:
        log.error("Invalid configuration: %s", e)
        sys.exit(2)

    try:
        asyncio.run(Daemon(settings).run())
    except OSError as e:
        log.error("Cannot serve on %s:%d: %s", settings.host, settings.port, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
