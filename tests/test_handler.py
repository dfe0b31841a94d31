"""Tests for the per-connection lifecycle, driven without a real socket."""

import asyncio

import pytest

from conftest import FakeExecutor, FakeTransport
from quazaar.lib.commands import CommandDispatcher
from quazaar.lib.handler import ConnectionHandler
from quazaar.lib.hub import BroadcastHub
from quazaar.lib.messages import MessageStatus, ServerMessage
from quazaar.lib.session import ClientSession, SessionState


class SilentTransport(FakeTransport):
    """Accepts *ok_writes* writes, then fails.  The read side never yields a frame."""

    def __init__(self, ok_writes: int = 1):
        super().__init__()
        self.ok_writes = ok_writes
        self._frames = asyncio.Queue()

    async def send_str(self, data: str):
        if len(self.sent) >= self.ok_writes:
            self.fail = True
        await super().send_str(data)

    def hang_up(self):
        self._frames.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


async def _wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _handler(hub: BroadcastHub) -> ConnectionHandler:
    return ConnectionHandler(hub, CommandDispatcher(FakeExecutor()))


class TestServe:

    @pytest.mark.asyncio
    async def test_failed_write_leaves_hub_before_reader_notices(self):
        hub = BroadcastHub()
        transport = SilentTransport(ok_writes=1)
        session = ClientSession(transport, session_id="slow")
        task = asyncio.create_task(_handler(hub).serve(session))

        await _wait_for(lambda: hub.count() == 1)
        assert transport.sent[0]["command"] == "welcome"

        hub.broadcast(ServerMessage.snapshot(MessageStatus.PLAYER, {"title": "a"}))
        await _wait_for(lambda: hub.count() == 0)
        assert transport.closed
        assert not task.done()

        # later broadcasts skip the dead session entirely
        assert hub.broadcast(ServerMessage.snapshot(MessageStatus.PLAYER, {"title": "b"})) == 0
        assert hub.drops == 0

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.state is SessionState.CLOSED
        assert transport.close_calls == 1

    @pytest.mark.asyncio
    async def test_client_hang_up_tears_down_once(self):
        hub = BroadcastHub()
        transport = SilentTransport(ok_writes=10)
        session = ClientSession(transport, session_id="quiet")
        task = asyncio.create_task(_handler(hub).serve(session))

        await _wait_for(lambda: hub.count() == 1)
        transport.hang_up()
        await asyncio.wait_for(task, timeout=1)

        assert hub.count() == 0
        assert session.state is SessionState.CLOSED
        assert session.outbound.closed
        assert transport.close_calls == 1
