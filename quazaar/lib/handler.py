# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
WebSocket connection handler (GET /ws).

Per connection:
  1. upgrade, build a ClientSession, register it with the hub
  2. send a welcome + the latest snapshot of every source, directly
  3. start the session's writer task (drains broadcasts onto the socket)
  4. read frames until the client goes away; each frame is a command whose
     reply goes back to this client only
  5. teardown, exactly once: unregister (closes the queue), wait for the
     writer to drain and exit, close the socket
"""

import asyncio
import logging

from aiohttp import WSMsgType, web

from .commands import CommandDispatcher
from .errors import CommandParseError
from .hub import BroadcastHub
from .messages import ServerMessage, parse_command
from .session import ClientSession, SessionState

log = logging.getLogger(__name__)

WRITER_DRAIN_TIMEOUT = 5.0


class ConnectionHandler:

    def __init__(self, hub: BroadcastHub, dispatcher: CommandDispatcher,
                 publishers=(), queue_size: int = 100, heartbeat: float | None = None):
        self.hub = hub
        self.dispatcher = dispatcher
        self.publishers = list(publishers)
        self.queue_size = queue_size
        self.heartbeat = heartbeat

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.heartbeat)
        try:
            await ws.prepare(request)
        except Exception as e:
            log.warning("WebSocket upgrade from %s failed: %s", request.remote, e)
            raise

        session = ClientSession(ws, queue_size=self.queue_size, remote=request.remote)
        log.info("Client connected: %s", session.id)
        await self.serve(session)
        return ws

    async def serve(self, session: ClientSession):
        """Run one session from registration to a closed transport."""
        self.hub.register(session)
        session.state = SessionState.OPEN
        writer: asyncio.Task | None = None
        try:
            await session.send(ServerMessage.success(
                "welcome", message="welcome", data={"client_id": session.id}))
            for publisher in self.publishers:
                if publisher.latest is not None:
                    await session.send(publisher.latest)

            writer = asyncio.create_task(session.run_writer(), name=f"writer-{session.id}")
            # a dead writer means nothing drains the queue: leave the hub now
            writer.add_done_callback(lambda _: self.hub.unregister(session.id))
            await self._read_loop(session)
        except Exception as e:
            log.info("Client %s dropped: %s", session.id, e)
        finally:
            await self._teardown(session, writer)

    async def _read_loop(self, session: ClientSession):
        ws = session.transport
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                reply = await self.handle_text(session, msg.data)
                await session.send(reply)
            elif msg.type == WSMsgType.BINARY:
                await session.send(ServerMessage.error("binary frames are not supported"))
            elif msg.type == WSMsgType.ERROR:
                log.info("Client %s read error: %s", session.id, ws.exception())
                break

    async def handle_text(self, session: ClientSession, raw: str) -> ServerMessage:
        try:
            command = parse_command(raw)
        except CommandParseError as e:
            log.info("Bad frame from %s: %s", session.id, e)
            return ServerMessage.error(str(e))
        log.debug("Received from %s: %s %s", session.id, command.name, command.params or "")
        return await self.dispatcher.dispatch(command)

    async def _teardown(self, session: ClientSession, writer: asyncio.Task | None):
        session.state = SessionState.CLOSING
        self.hub.unregister(session.id)
        if writer is not None:
            try:
                await asyncio.wait_for(writer, timeout=WRITER_DRAIN_TIMEOUT)
            except asyncio.TimeoutError:
                log.warning("Writer for %s stuck, cancelled", session.id)
        await session.close_transport()
        session.state = SessionState.CLOSED
        log.info("Client disconnected: %s (%d sent, %d dropped)",
                 session.id, session.sent, session.dropped)
