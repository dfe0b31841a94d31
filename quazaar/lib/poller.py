# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Interval pollers.

A Poller runs one zero-argument task (sync or async) immediately and then
every *interval* seconds until its stop event is set.  A tick that raises is
logged and forgotten; the next scheduled tick is the retry.

SnapshotPublisher is the task every data source gets: poll the source, wrap
the result in a ServerMessage, hand it to the hub.

Usage:
    media = SnapshotPublisher(hub, MessageStatus.PLAYER, MediaSource())
    poller = Poller("media", 1.0, media)
    poller.start()
    ...
    await poller.stop()
"""

import asyncio
import inspect
import logging

from .errors import SourceUnavailable
from .hub import BroadcastHub
from .messages import MessageStatus, ServerMessage

log = logging.getLogger(__name__)


class Poller:

    def __init__(self, name: str, interval: float, task, stop_event: asyncio.Event | None = None):
        if interval is None or interval <= 0:
            raise ValueError(f"poller {name}: interval must be > 0, got {interval!r}")
        self.name = name
        self.interval = float(interval)
        self.task = task
        self.stop_event = stop_event or asyncio.Event()
        self.ticks = 0
        self.failures = 0
        self._runner: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> asyncio.Task:
        """Spawn the loop as its own task (idempotent while running)."""
        if not self.running:
            self._runner = asyncio.create_task(self.run(), name=f"poller-{self.name}")
        return self._runner

    async def run(self):
        """The polling loop itself.  Returns once the stop event is set."""
        log.info("Poller %s started (every %.1fs)", self.name, self.interval)
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self.stop_event.is_set():
            await self._tick()

            next_tick += self.interval
            delay = next_tick - loop.time()
            if delay < 0:
                # tick overran its slot: run once more right away, then re-anchor
                next_tick = loop.time()
                delay = 0
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        log.info("Poller %s stopped after %d ticks (%d failed)",
                 self.name, self.ticks, self.failures)

    async def _tick(self):
        self.ticks += 1
        try:
            result = self.task()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            log.warning("Poller %s tick failed: %s", self.name, e, exc_info=log.isEnabledFor(logging.DEBUG))

    async def stop(self, timeout: float | None = None):
        """Signal stop and wait for the loop to exit.

        The in-flight tick is allowed to finish; with *timeout* it is
        abandoned (cancelled) if it takes longer than that.
        """
        self.stop_event.set()
        if self._runner is None:
            return
        runner, self._runner = self._runner, None
        try:
            await asyncio.wait_for(runner, timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Poller %s did not stop within %ss, abandoned tick", self.name, timeout)


class SnapshotPublisher:
    """Tick task: poll *source* and broadcast what it returns.

    *source* is anything with ``async poll()`` returning a JSON-ready payload
    or raising SourceUnavailable.  The last successful message is kept in
    ``latest`` so new clients can be brought up to date immediately.
    """

    def __init__(self, hub: BroadcastHub, status: MessageStatus, source):
        self.hub = hub
        self.status = MessageStatus(status)
        self.source = source
        self.latest: ServerMessage | None = None
        self._failing = False

    @property
    def name(self) -> str:
        return self.status.value

    async def __call__(self):
        try:
            data = await self.source.poll()
        except SourceUnavailable as e:
            # Log the transition only; "no player running" can last hours
            if not self._failing:
                log.warning("%s source unavailable: %s", self.name, e)
            else:
                log.debug("%s source still unavailable: %s", self.name, e)
            self._failing = True
            return
        if self._failing:
            log.info("%s source is back", self.name)
            self._failing = False

        msg = ServerMessage.snapshot(self.status, data)
        self.latest = msg
        self.hub.broadcast(msg)
