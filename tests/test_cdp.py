"""Tests for the aiohttp DevTools client against an in-process fake browser."""

import asyncio
import json
import os
import socket

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from browser_log_collector.cdp import CDPClient
from browser_log_collector.config import Config
from browser_log_collector.errors import CommandError, ProtocolConnectionError
from browser_log_collector.models import TargetDescriptor
from browser_log_collector.monitor import LivenessMonitor
from browser_log_collector.session import TargetSession
from browser_log_collector.supervisor import Collector

from conftest import messages, wait_until


class FakeBrowser:
    """Serves /json/list, /json/version and DevTools WebSockets."""

    def __init__(self):
        self.received: list[str] = []
        self.failing = {"Network.enable"}
        self.silent: set[str] = set()
        self.html_paths: set[str] = set()
        self.listing: list | None = None
        self.sockets: list[web.WebSocketResponse] = []
        self.server: TestServer | None = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/json/list", self.list_targets)
        app.router.add_get("/json/version", self.version)
        app.router.add_get("/devtools/page/{id}", self.devtools)
        app.router.add_get("/devtools/browser/{id}", self.devtools)
        return app

    def _html(self):
        return web.Response(text="<html><body>It works!</body></html>", content_type="text/html")

    async def list_targets(self, request):
        if request.path in self.html_paths:
            return self._html()
        if self.listing is not None:
            return web.json_response(self.listing)
        return web.json_response([
            {
                "id": "P1",
                "type": "page",
                "title": "Inbox",
                "url": "https://mail.test/",
                "webSocketDebuggerUrl": f"ws://{request.host}/devtools/page/P1",
            },
            {
                "id": "W1",
                "type": "service_worker",
                "title": "sw.js",
                "url": "https://mail.test/sw.js",
                "webSocketDebuggerUrl": f"ws://{request.host}/devtools/page/W1",
            },
        ])

    async def version(self, request):
        if request.path in self.html_paths:
            return self._html()
        return web.json_response({
            "Browser": "Chrome/124.0.6367.60",
            "Protocol-Version": "1.3",
            "webSocketDebuggerUrl": f"ws://{request.host}/devtools/browser/b-1",
        })

    async def devtools(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            data = json.loads(msg.data)
            self.received.append(data["method"])
            if data["method"] in self.silent:
                continue
            if data["method"] in self.failing:
                await ws.send_json({"id": data["id"], "error": {"code": -32601, "message": "not available"}})
                continue
            await ws.send_json({"id": data["id"], "result": {}})
            if data["method"] == "Runtime.enable":
                await ws.send_json({"method": "Runtime.consoleAPICalled", "params": {
                    "type": "info", "args": [{"type": "string", "value": "hello from page"}],
                }})
        return ws


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest_asyncio.fixture
async def browser():
    fake = FakeBrowser()
    fake.server = TestServer(fake.make_app())
    await fake.server.start_server()
    yield fake
    for ws in fake.sockets:
        await ws.close()
    await fake.server.close()


@pytest_asyncio.fixture
async def cdp(browser):
    async with CDPClient(browser.server.host, browser.server.port) as client:
        yield client


class TestHttpEndpoints:
    @pytest.mark.asyncio
    async def test_list_targets(self, cdp):
        targets = await cdp.list_targets()
        assert [t.id for t in targets] == ["P1", "W1"]
        assert targets[0].type == "page"
        assert targets[0].label == "Inbox"
        assert targets[0].ws_url.endswith("/devtools/page/P1")

    @pytest.mark.asyncio
    async def test_probe_version(self, cdp):
        version = await cdp.probe_version()
        assert version["Browser"].startswith("Chrome/")

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        async with CDPClient("127.0.0.1", _unused_port(), probe_timeout=0.5) as client:
            with pytest.raises(ProtocolConnectionError):
                await client.probe_version()
            with pytest.raises(ProtocolConnectionError):
                await client.list_targets()

    @pytest.mark.asyncio
    async def test_unknown_target_cannot_connect(self, cdp):
        with pytest.raises(ProtocolConnectionError):
            await cdp.connect(TargetDescriptor(id="P1", type="page", ws_url=f"ws://{cdp.host}:{cdp.port}/nope"))

    @pytest.mark.asyncio
    async def test_html_reply_is_connection_error(self, cdp, browser):
        browser.html_paths.update({"/json/version", "/json/list"})
        with pytest.raises(ProtocolConnectionError):
            await cdp.probe_version()
        with pytest.raises(ProtocolConnectionError):
            await cdp.list_targets()

    @pytest.mark.asyncio
    async def test_malformed_listing_is_connection_error(self, cdp, browser):
        browser.listing = [{"type": "page", "title": "no id"}]
        with pytest.raises(ProtocolConnectionError):
            await cdp.list_targets()

        browser.listing = ["P1"]
        with pytest.raises(ProtocolConnectionError):
            await cdp.list_targets()


class TestConnection:
    @pytest.mark.asyncio
    async def test_commands_and_events(self, cdp, browser):
        targets = await cdp.list_targets()
        connection = await cdp.connect(targets[0])
        try:
            assert await connection.send("Runtime.enable") == {}
            event = await asyncio.wait_for(connection.events().__anext__(), timeout=2.0)
            assert event.method == "Runtime.consoleAPICalled"
            assert event.params["args"][0]["value"] == "hello from page"
        finally:
            await connection.close()
        assert browser.received == ["Runtime.enable"]

    @pytest.mark.asyncio
    async def test_error_response_raises_command_error(self, cdp):
        connection = await cdp.connect(TargetDescriptor(id="P1", type="page"))
        try:
            with pytest.raises(CommandError) as excinfo:
                await connection.send("Network.enable")
            assert excinfo.value.method == "Network.enable"
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_close_ends_events_and_rejects_sends(self, cdp):
        connection = await cdp.connect(TargetDescriptor(id="P1", type="page"))
        await connection.close()
        await connection.close()

        assert [e async for e in connection.events()] == []
        with pytest.raises(ProtocolConnectionError):
            await connection.send("Runtime.enable")

    @pytest.mark.asyncio
    async def test_server_side_close_is_a_disconnect(self, cdp, browser):
        connection = await cdp.connect(TargetDescriptor(id="P1", type="page"))
        await wait_until(lambda: browser.sockets)
        await browser.sockets[0].close()

        events = [e async for e in connection.events()]
        assert events == []
        assert connection.closed is True
        await connection.close()

    @pytest.mark.asyncio
    async def test_open_discovery_enables_target_discovery(self, cdp, browser):
        connection = await cdp.open_discovery()
        try:
            assert browser.received == ["Target.setDiscoverTargets"]
        finally:
            await connection.close()

    @pytest.mark.asyncio
    async def test_unanswered_command_times_out(self, browser):
        browser.silent.add("Runtime.enable")
        async with CDPClient(browser.server.host, browser.server.port, command_timeout=0.2) as client:
            connection = await client.connect(TargetDescriptor(id="P1", type="page"))
            try:
                with pytest.raises(ProtocolConnectionError):
                    await connection.send("Runtime.enable")
                assert await connection.send("Log.enable") == {}
            finally:
                await connection.close()


class TestSessionOverDevTools:
    @pytest.mark.asyncio
    async def test_session_collects_without_network_feed(self, cdp, sink, log_path):
        targets = await cdp.list_targets()
        session = await TargetSession.open(cdp, targets[0], sink)
        closed = []

        async def on_closed(s):
            closed.append(s)

        session.start(on_closed, lambda error: None)
        await wait_until(lambda: messages(log_path) == ["hello from page"])

        assert session.network_enabled is False
        await session.close()
        await session.wait_closed()
        assert closed == [session]


class TestForeignServerOnPort:
    @pytest.mark.asyncio
    async def test_monitor_treats_html_reply_as_host_gone(self, cdp, browser):
        gone = []

        async def on_host_gone():
            gone.append(True)

        browser.html_paths.add("/json/version")
        monitor = LivenessMonitor(cdp, on_host_gone, interval=0.01)
        await asyncio.wait_for(monitor.start(), timeout=2.0)

        assert gone == [True]

    @pytest.mark.asyncio
    async def test_collector_start_failure_removes_pid_file(self, cdp, browser, tmp_path, log_path):
        browser.html_paths.add("/json/list")
        config = Config(
            host=browser.server.host,
            port=browser.server.port,
            output=log_path,
            pid_file=str(tmp_path / "collector.pid"),
        )

        assert await asyncio.wait_for(Collector(config, cdp).run(), timeout=5.0) == 1
        assert not os.path.exists(config.pid_file)
        assert messages(log_path) == []
