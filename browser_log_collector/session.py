"""TargetSession: one live subscription to one browser target."""

import asyncio
import logging

from browser_log_collector.errors import CollectorError, FormatError, PersistenceError, SubscriptionError
from browser_log_collector.formatter import FORMATTERS, placeholder_entry
from browser_log_collector.models import ProtocolEvent, SessionState, TargetDescriptor
from browser_log_collector.protocol import Connection, ProtocolClient, close_quietly
from browser_log_collector.sink import RotatingLogSink

logger = logging.getLogger(__name__)

REQUIRED_FEEDS = ("Runtime", "Log")
OPTIONAL_FEEDS = ("Network",)


class TargetSession:
    """Subscribes to a target's feeds and forwards formatted entries to the sink.

    Events are consumed by a single task, so entries from one target reach
    the sink in delivery order. The session never reconnects: once its
    connection ends it is closed for good.
    """

    def __init__(self, target: TargetDescriptor, connection: Connection, sink: RotatingLogSink):
        self.target = target
        self.label = target.label
        self.state = SessionState.CONNECTING
        self.network_enabled = False
        self._connection = connection
        self._sink = sink
        self._task: asyncio.Task | None = None

    @property
    def target_id(self) -> str:
        return self.target.id

    @classmethod
    async def open(cls, client: ProtocolClient, target: TargetDescriptor,
                   sink: RotatingLogSink) -> "TargetSession":
        """Connect and subscribe. Raises ProtocolConnectionError or SubscriptionError."""
        connection = await client.connect(target)
        session = cls(target, connection, sink)
        try:
            await session.subscribe()
        except CollectorError:
            await close_quietly(connection, f"tab {target.label}")
            raise
        return session

    async def _enable(self, domain: str):
        try:
            await self._connection.send(f"{domain}.enable")
        except CollectorError as e:
            raise SubscriptionError(f"{domain} feed unavailable on {self.label}: {e}") from e

    async def subscribe(self):
        await asyncio.gather(*(self._enable(domain) for domain in REQUIRED_FEEDS))
        for domain in OPTIONAL_FEEDS:
            try:
                await self._enable(domain)
                self.network_enabled = True
            except SubscriptionError as e:
                logger.warning("Running without network coverage: %s", e)
        self.state = SessionState.ACTIVE
        logger.debug("Subscribed to %s (network=%s)", self.label, self.network_enabled)

    def start(self, on_closed, on_fatal) -> asyncio.Task:
        """Begin consuming events.

        on_closed(session) is awaited once the connection ends; on_fatal(error)
        is called if the sink can no longer be written.
        """
        self._task = asyncio.create_task(self._run(on_closed, on_fatal))
        return self._task

    async def _run(self, on_closed, on_fatal):
        try:
            async for event in self._connection.events():
                await self._handle(event)
        except PersistenceError as e:
            on_fatal(e)
            await close_quietly(self._connection, f"tab {self.label}")
        finally:
            self.state = SessionState.CLOSED
            await on_closed(self)

    async def _handle(self, event: ProtocolEvent):
        formatter = FORMATTERS.get(event.method)
        if formatter is None:
            return
        try:
            entry = formatter(event.params)
        except FormatError as e:
            logger.warning("Malformed %s event from %s: %s", event.method, self.label, e)
            entry = placeholder_entry(event.method, e)
        if entry is None:
            return
        entry.tab_label = self.label
        await self._sink.append(entry)

    async def close(self):
        """Close the connection. The consumer task drains and ends on its own."""
        self.state = SessionState.CLOSED
        await close_quietly(self._connection, f"tab {self.label}")

    async def wait_closed(self):
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
