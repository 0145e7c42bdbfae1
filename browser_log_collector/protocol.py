"""Capability interface the collector needs from a DevTools protocol client."""

import logging
from typing import AsyncIterator, Protocol, runtime_checkable

from browser_log_collector.models import ProtocolEvent, TargetDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class Connection(Protocol):
    async def send(self, method: str, params: dict | None = None) -> dict: ...

    def events(self) -> AsyncIterator[ProtocolEvent]:
        """Pushed events in arrival order. Ends when the connection is lost."""
        ...

    async def close(self) -> None: ...


@runtime_checkable
class ProtocolClient(Protocol):
    async def list_targets(self) -> list[TargetDescriptor]: ...

    async def connect(self, target: TargetDescriptor) -> Connection: ...

    async def probe_version(self) -> dict: ...

    async def open_discovery(self) -> Connection:
        """Browser-level connection delivering Target.targetCreated/targetDestroyed."""
        ...


async def close_quietly(connection: Connection, what: str) -> None:
    """Close, log and ignore. Used wherever a close failure must not stop the caller."""
    try:
        await connection.close()
    except Exception as e:
        logger.debug("Ignoring error while closing %s: %s", what, e)
