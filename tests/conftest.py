"""Shared fixtures: in-memory protocol client, sink and record helpers."""

import asyncio
import json
import time

import jsonschema
import pytest

from browser_log_collector.errors import CommandError, ProtocolConnectionError
from browser_log_collector.models import ProtocolEvent, TargetDescriptor
from browser_log_collector.sink import RotatingLogSink

ENTRY_SCHEMA = {
    "type": "object",
    "required": ["ts", "level", "message"],
    "properties": {
        "ts": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"},
        "level": {"enum": ["log", "info", "warn", "error", "debug"]},
        "type": {"enum": ["exception", "network", "http", "collector"]},
        "message": {"type": "string"},
        "url": {"type": "string"},
        "line": {"type": "integer"},
        "tab": {"type": "string"},
        "status": {"type": "integer"},
        "source": {"type": "string"},
    },
}


class FakeConnection:
    """Connection double. Tests push events and simulate disconnects."""

    def __init__(self, name: str = "tab", fail_methods=()):
        self.name = name
        self.fail_methods = set(fail_methods)
        self.sent: list[tuple[str, dict | None]] = []
        self.closed = False
        self.close_calls = 0
        self._queue: asyncio.Queue = asyncio.Queue()

    async def send(self, method, params=None):
        if self.closed:
            raise ProtocolConnectionError(f"{self.name} closed")
        self.sent.append((method, params))
        if method in self.fail_methods:
            raise CommandError(method, {"code": -32601, "message": f"'{method}' wasn't found"})
        return {}

    def push(self, method, params: dict | None = None):
        event = method if isinstance(method, ProtocolEvent) else ProtocolEvent(method, params)
        self._queue.put_nowait(event)

    def disconnect(self):
        self.closed = True
        self._queue.put_nowait(None)

    async def events(self):
        while True:
            event = await self._queue.get()
            if event is None:
                self._queue.put_nowait(None)
                return
            yield event

    async def close(self):
        self.close_calls += 1
        self.disconnect()


class FakeClient:
    """ProtocolClient double backed by a list of targets."""

    def __init__(self, targets=()):
        self.targets = list(targets)
        self.alive = True
        self.unreachable: set[str] = set()
        self.fail_methods: dict[str, set[str]] = {}
        self.connections: dict[str, FakeConnection] = {}
        self.connect_calls: list[str] = []
        self.connect_gate: asyncio.Event | None = None
        self.discovery = FakeConnection("browser")
        self.probes = 0

    async def list_targets(self):
        if not self.alive:
            raise ProtocolConnectionError("Connection refused")
        return list(self.targets)

    async def connect(self, target):
        self.connect_calls.append(target.id)
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if not self.alive or target.id in self.unreachable:
            raise ProtocolConnectionError(f"Cannot connect to {target.id}")
        connection = FakeConnection(target.id, self.fail_methods.get(target.id, ()))
        self.connections[target.id] = connection
        return connection

    async def probe_version(self):
        self.probes += 1
        if not self.alive:
            raise ProtocolConnectionError("Connection refused")
        return {"Browser": "Chrome/124.0", "webSocketDebuggerUrl": "ws://fake/devtools/browser/1"}

    async def open_discovery(self):
        if not self.alive:
            raise ProtocolConnectionError("Connection refused")
        return self.discovery


def page(target_id: str, title: str = "", url: str = "https://example.com/", kind: str = "page"):
    return TargetDescriptor(id=target_id, type=kind, title=title, url=url)


def read_records(path) -> list[dict]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
    except FileNotFoundError:
        return []


def messages(path) -> list[str]:
    return [r["message"] for r in read_records(path)]


def assert_valid_records(path):
    for record in read_records(path):
        jsonschema.validate(record, ENTRY_SCHEMA)


async def wait_until(predicate, timeout: float = 2.0):
    """Poll predicate while letting background tasks (and aiofiles threads) run."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def log_path(tmp_path):
    return str(tmp_path / "browser-logs.jsonl")


@pytest.fixture
def sink(log_path):
    return RotatingLogSink(log_path, max_size_bytes=1024)


@pytest.fixture
def client():
    return FakeClient([page("A", "Inbox"), page("B", "Docs")])
