# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Per-connection state: the transport, its bounded outbound queue, and the
writer task that drains one into the other.

Producers (the hub's broadcast) only ever call ``outbound.offer()``, which
never blocks.  The session's own writer task is the only consumer.  Direct
replies (welcome, command results) go through ``send()``, which shares a
write lock with the writer so frames never interleave on the socket.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from enum import Enum

from .messages import ServerMessage

log = logging.getLogger(__name__)

_id_counter = itertools.count(1)


def make_session_id(remote: str | None) -> str:
    """Unique per connection, even for two connects in the same nanosecond."""
    return f"{remote or 'unknown'}-{time.time_ns()}-{next(_id_counter)}"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class OutboundQueue:
    """Bounded FIFO with a non-blocking put and a closable get.

    ``offer()`` refuses (returns False) instead of waiting when full.
    ``close()`` is idempotent; the consumer still drains whatever was queued
    before closure, then ``get()`` returns None.
    """

    def __init__(self, maxsize: int = 100):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self.maxsize = maxsize
        self._items: deque[ServerMessage] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._items)

    def full(self) -> bool:
        return len(self._items) >= self.maxsize

    def offer(self, msg: ServerMessage) -> bool:
        if self._closed or self.full():
            return False
        self._items.append(msg)
        self._wakeup.set()
        return True

    def close(self) -> bool:
        """Close the queue.  Returns True only for the call that closed it."""
        if self._closed:
            return False
        self._closed = True
        self._wakeup.set()
        return True

    def get_nowait(self) -> ServerMessage:
        if not self._items:
            raise asyncio.QueueEmpty
        return self._items.popleft()

    async def get(self) -> ServerMessage | None:
        while True:
            if self._items:
                return self._items.popleft()
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()


class ClientSession:
    """One connected browser.

    *transport* is anything with ``async send_str(str)``, ``async close()``
    and a ``closed`` attribute (an aiohttp WebSocketResponse in production).
    """

    def __init__(self, transport, session_id: str | None = None,
                 queue_size: int = 100, remote: str | None = None):
        self.transport = transport
        self.remote = remote
        self.id = session_id or make_session_id(remote)
        self.outbound = OutboundQueue(queue_size)
        self.state = SessionState.CONNECTING
        self.connected_at = time.time()
        self.sent = 0
        self.dropped = 0
        self._write_lock = asyncio.Lock()

    def __repr__(self):
        return f"<ClientSession {self.id} {self.state.value}>"

    async def send(self, msg: ServerMessage):
        """Write one message straight to the transport.  Raises on failure."""
        async with self._write_lock:
            await self.transport.send_str(msg.to_json())
        self.sent += 1

    async def run_writer(self):
        """Drain ``outbound`` onto the transport until closed or a write fails.

        A failed write is not retried: the transport is closed so the
        connection's reader loop ends and runs the (single) teardown.
        """
        while True:
            msg = await self.outbound.get()
            if msg is None:
                break
            try:
                await self.send(msg)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if getattr(self.transport, "closed", False):
                    log.debug("Client %s gone, dropping %d queued", self.id,
                              self.outbound.qsize() + 1)
                else:
                    log.error("Write to client %s failed: %s", self.id, e)
                self.state = SessionState.CLOSING
                await self.close_transport()
                break
        log.debug("Writer for %s finished (%d sent)", self.id, self.sent)

    async def close_transport(self):
        if getattr(self.transport, "closed", False):
            return
        try:
            await self.transport.close()
        except Exception as e:
            log.debug("Closing transport for %s: %s", self.id, e)
