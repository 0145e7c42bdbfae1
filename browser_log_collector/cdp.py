"""Chrome DevTools Protocol client over aiohttp (HTTP endpoints + WebSockets)."""

import asyncio
import json
import logging

import aiohttp

from browser_log_collector.errors import CommandError, ProtocolConnectionError
from browser_log_collector.models import ProtocolEvent, TargetDescriptor

logger = logging.getLogger(__name__)

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)

DEFAULT_COMMAND_TIMEOUT = 10.0  # seconds a target may take to answer one command


class CDPConnection:
    """One WebSocket to a target (or the browser endpoint).

    Command responses are matched to callers by id; everything else is an
    event and goes onto a queue drained by events().
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, name: str,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.name = name
        self.command_timeout = command_timeout
        self._ws = ws
        self._next_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._events: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    async def _read_loop(self):
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("WebSocket error on %s: %s", self.name, self._ws.exception())
                    break
        finally:
            self._closed = True
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ProtocolConnectionError(f"Connection to {self.name} lost"))
            self._pending.clear()
            self._events.put_nowait(None)
            logger.debug("Connection to %s ended", self.name)

    def _dispatch(self, raw: str):
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Dropping non-JSON frame from %s", self.name)
            return
        if not isinstance(data, dict):
            return

        if "id" in data:
            future = self._pending.pop(data["id"], None)
            if future and not future.done():
                future.set_result(data)
        elif "method" in data:
            self._events.put_nowait(ProtocolEvent(data["method"], data.get("params") or {}))

    async def send(self, method: str, params: dict | None = None) -> dict:
        if self._closed:
            raise ProtocolConnectionError(f"Connection to {self.name} is closed")

        self._next_id += 1
        msg_id = self._next_id
        message = {"id": msg_id, "method": method}
        if params:
            message["params"] = params

        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            await self._ws.send_json(message)
        except (ConnectionError, aiohttp.ClientError) as e:
            self._pending.pop(msg_id, None)
            raise ProtocolConnectionError(f"{method} to {self.name} not sent: {e}") from e

        try:
            response = await asyncio.wait_for(future, self.command_timeout)
        except asyncio.TimeoutError as e:
            self._pending.pop(msg_id, None)
            raise ProtocolConnectionError(
                f"{method} to {self.name} unanswered after {self.command_timeout:g}s"
            ) from e
        if "error" in response:
            raise CommandError(method, response["error"])
        return response.get("result", {})

    async def events(self):
        while True:
            event = await self._events.get()
            if event is None:
                # leave the end marker for any other reader
                self._events.put_nowait(None)
                return
            yield event

    async def close(self) -> None:
        await self._ws.close()
        await self._reader


class CDPClient:
    """HTTP + WebSocket access to a browser started with --remote-debugging-port."""

    def __init__(self, host: str, port: int, probe_timeout: float = 2.0,
                 command_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.host = host
        self.port = port
        self.probe_timeout = probe_timeout
        self.command_timeout = command_timeout
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "CDPClient":
        self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    async def _get_json(self, path: str, timeout: float | None = None):
        url = self.base_url + path
        client_timeout = aiohttp.ClientTimeout(total=timeout) if timeout else None
        try:
            async with self._session.get(url, timeout=client_timeout) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except _NETWORK_ERRORS as e:
            raise ProtocolConnectionError(f"Cannot reach {url}: {e}") from e
        except ValueError as e:
            # something other than the DevTools endpoint is answering on this port
            raise ProtocolConnectionError(f"Unexpected non-JSON reply from {url}: {e}") from e

    async def list_targets(self) -> list[TargetDescriptor]:
        data = await self._get_json("/json/list")
        try:
            return [TargetDescriptor.from_listing(item) for item in data]
        except (KeyError, TypeError, AttributeError) as e:
            raise ProtocolConnectionError(f"Malformed target list from {self.base_url}: {e!r}") from e

    async def probe_version(self) -> dict:
        version = await self._get_json("/json/version", timeout=self.probe_timeout)
        if not isinstance(version, dict):
            raise ProtocolConnectionError(f"Malformed version reply from {self.base_url}")
        return version

    async def connect(self, target: TargetDescriptor) -> CDPConnection:
        url = target.ws_url or f"ws://{self.host}:{self.port}/devtools/page/{target.id}"
        return await self._open(url, target.label)

    async def open_discovery(self) -> CDPConnection:
        version = await self.probe_version()
        url = version.get("webSocketDebuggerUrl")
        if not url:
            raise ProtocolConnectionError("Browser did not advertise a debugger WebSocket")

        connection = await self._open(url, "browser")
        try:
            await connection.send("Target.setDiscoverTargets", {"discover": True})
        except Exception:
            await connection.close()
            raise
        return connection

    async def _open(self, url: str, name: str) -> CDPConnection:
        try:
            ws = await self._session.ws_connect(url, max_msg_size=0)
        except _NETWORK_ERRORS as e:
            raise ProtocolConnectionError(f"Cannot connect to {name} at {url}: {e}") from e
        return CDPConnection(ws, name, self.command_timeout)
