"""End-to-end tests over a real aiohttp server."""

import asyncio
import json
import warnings

import aiohttp
import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from conftest import FakeExecutor
from quazaar.lib.commands import CommandDispatcher
from quazaar.lib.config import DEFAULT_INTERVALS, Settings
from quazaar.lib.hub import BroadcastHub
from quazaar.lib.messages import MessageStatus, ServerMessage
from quazaar.lib.poller import Poller, SnapshotPublisher
from quazaar.server import Daemon, build_app, main

NO_POLLERS = {"media": None, "bluetooth": None, "wifi": None}


class StaticSource:
    async def poll(self):
        return {"ssid": "Home", "connected": True}


async def _wait_for(predicate, timeout=1.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _app(hub=None, executor=None, publishers=(), pollers=(), **settings):
    if hub is None:
        hub = BroadcastHub()
    dispatcher = CommandDispatcher(executor or FakeExecutor())
    return build_app(Settings(heartbeat=None, **settings), hub, dispatcher, publishers, pollers)


class TestWebSocket:

    @pytest.mark.asyncio
    async def test_welcome(self):
        hub = BroadcastHub()
        async with TestClient(TestServer(_app(hub))) as client:
            ws = await client.ws_connect("/ws")
            welcome = await ws.receive_json(timeout=1)
            assert welcome["status"] == "success"
            assert welcome["command"] == "welcome"
            assert welcome["data"]["client_id"] in hub
            assert hub.count() == 1
            await ws.close()

    @pytest.mark.asyncio
    async def test_latest_snapshot_replayed_on_connect(self):
        hub = BroadcastHub()
        publisher = SnapshotPublisher(hub, MessageStatus.WIFI, StaticSource())
        await publisher()

        async with TestClient(TestServer(_app(hub, publishers=[publisher]))) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=1)
            snapshot = await ws.receive_json(timeout=1)
            assert snapshot == {"status": "wifi", "data": {"ssid": "Home", "connected": True}}
            await ws.close()

    @pytest.mark.asyncio
    async def test_reply_goes_only_to_sender(self):
        executor = FakeExecutor()
        async with TestClient(TestServer(_app(executor=executor))) as client:
            sender = await client.ws_connect("/ws")
            other = await client.ws_connect("/ws")
            await sender.receive_json(timeout=1)
            await other.receive_json(timeout=1)

            await sender.send_json({"command": "next"})
            reply = await sender.receive_json(timeout=1)
            assert reply == {"status": "success", "command": "next"}
            assert executor.actions[0].argv == ("playerctl", "next")

            with pytest.raises(asyncio.TimeoutError):
                await other.receive(timeout=0.2)
            await sender.close()
            await other.close()

    @pytest.mark.asyncio
    async def test_rejected_frames(self):
        executor = FakeExecutor()
        async with TestClient(TestServer(_app(executor=executor))) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=1)

            await ws.send_json({"command": "rm -rf /"})
            assert await ws.receive_json(timeout=1) == {
                "status": "error", "message": "unknown command: rm -rf /",
            }
            await ws.send_str("not json")
            assert (await ws.receive_json(timeout=1))["message"] == "Invalid JSON format"
            await ws.send_bytes(b"\x00\x01")
            assert (await ws.receive_json(timeout=1))["message"] == "binary frames are not supported"

            # connection is still usable
            await ws.send_json({"command": "ping"})
            assert (await ws.receive_json(timeout=1))["message"] == "pong"
            assert executor.actions == []
            await ws.close()

    @pytest.mark.asyncio
    async def test_broadcast_reaches_every_client(self):
        hub = BroadcastHub()
        async with TestClient(TestServer(_app(hub))) as client:
            clients = [await client.ws_connect("/ws") for _ in range(3)]
            for ws in clients:
                await ws.receive_json(timeout=1)

            assert hub.broadcast(ServerMessage.snapshot(MessageStatus.BLUETOOTH, [])) == 3
            for ws in clients:
                assert await ws.receive_json(timeout=1) == {"status": "bluetooth", "data": []}
                await ws.close()

    @pytest.mark.asyncio
    async def test_disconnect_unregisters(self):
        hub = BroadcastHub()
        async with TestClient(TestServer(_app(hub))) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=1)
            assert hub.count() == 1
            await ws.close()
            await _wait_for(lambda: hub.count() == 0)

    @pytest.mark.asyncio
    async def test_poller_feeds_connected_client(self):
        hub = BroadcastHub()
        publisher = SnapshotPublisher(hub, MessageStatus.WIFI, StaticSource())
        poller = Poller("wifi", 0.05, publisher)

        async with TestClient(TestServer(_app(hub, publishers=[publisher], pollers=[poller]))) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=1)
            poller.start()
            msg = await ws.receive_json(timeout=1)
            assert msg["status"] == "wifi"
            await poller.stop()
            await ws.close()


class TestHttp:

    @pytest.mark.asyncio
    async def test_status(self):
        hub = BroadcastHub()
        poller = Poller("media", 1.0, lambda: None)
        async with TestClient(TestServer(_app(hub, pollers=[poller]))) as client:
            ws = await client.ws_connect("/ws")
            await ws.receive_json(timeout=1)

            resp = await client.get("/status")
            assert resp.status == 200
            body = await resp.json()
            assert body["clients"] == 1
            assert body["sessions"][0]["state"] == "open"
            assert body["pollers"] == [
                {"name": "media", "interval": 1.0, "running": False, "ticks": 0, "failures": 0},
            ]
            await ws.close()

    @pytest.mark.asyncio
    async def test_index_is_not_cached(self):
        async with TestClient(TestServer(_app())) as client:
            resp = await client.get("/")
            assert resp.status == 200
            assert "no-store" in resp.headers["Cache-Control"]
            assert "/ws" in await resp.text()

    @pytest.mark.asyncio
    async def test_custom_static_dir(self, tmp_path):
        (tmp_path / "index.html").write_text("<h1>kiosk</h1>")
        (tmp_path / "app.js").write_text("console.log(1)")
        async with TestClient(TestServer(_app(static_dir=str(tmp_path)))) as client:
            assert await (await client.get("/")).text() == "<h1>kiosk</h1>"
            resp = await client.get("/static/app.js")
            assert resp.status == 200
            assert resp.headers["Pragma"] == "no-cache"

    @pytest.mark.asyncio
    async def test_missing_static_dir(self, tmp_path):
        async with TestClient(TestServer(_app(static_dir=str(tmp_path / "nope")))) as client:
            assert (await client.get("/")).status == 404
            assert (await client.get("/status")).status == 200


class TestRoutes:

    def test_build_app_has_no_deprecated_handlers(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            app = _app()
        assert "/ws" in {r.resource.canonical for r in app.router.routes()}


class TestDaemon:

    def test_pollers_follow_intervals(self):
        daemon = Daemon(Settings(intervals={"media": 1.0, "bluetooth": None, "wifi": 3.0}))
        assert [(p.name, p.interval) for p in daemon.pollers] == [("media", 1.0), ("wifi", 3.0)]
        assert [p.name for p in daemon.publishers] == ["player", "wifi"]
        assert all(p.stop_event is daemon.stop_event for p in daemon.pollers)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, unused_tcp_port):
        daemon = Daemon(Settings(host="127.0.0.1", port=unused_tcp_port, intervals=dict(NO_POLLERS)))
        await daemon.start()

        async with aiohttp.ClientSession() as http:
            ws = await http.ws_connect(f"http://127.0.0.1:{unused_tcp_port}/ws")
            await ws.receive_json(timeout=1)
            assert daemon.hub.count() == 1

            stopping = asyncio.create_task(daemon.stop())
            msg = await ws.receive(timeout=5)
            await asyncio.wait_for(stopping, timeout=10)
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.CLOSING)
            assert daemon.hub.count() == 0
            assert daemon.stop_event.is_set()


class TestMain:

    def test_bad_config_exits(self, clean_config, monkeypatch):
        monkeypatch.setenv("QUAZAAR_PORT", "not-a-port")
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 2

    @pytest.mark.parametrize("server", [{"heartbeat": "soon"}, {"static_dir": 5}])
    def test_bad_server_section_exits(self, clean_config, server):
        (clean_config / "config.json").write_text(json.dumps({"server": server}))
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 2

    def test_pollers_list_does_not_crash_startup(self, clean_config, monkeypatch):
        (clean_config / "config.json").write_text(json.dumps({"pollers": [1, 2]}))
        started = []

        async def fake_run(self):
            started.append(self.settings.intervals)

        monkeypatch.setattr(Daemon, "run", fake_run)
        main([])
        assert started == [DEFAULT_INTERVALS]
