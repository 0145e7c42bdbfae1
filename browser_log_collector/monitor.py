"""Liveness monitor: ends the collector when the browser goes away."""

import asyncio
import logging

from browser_log_collector.errors import CollectorError
from browser_log_collector.protocol import ProtocolClient

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Periodically probes the browser's version endpoint.

    The first failed probe is the expected end of life for the collector,
    not an error: on_host_gone() is awaited once and the monitor stops.
    """

    def __init__(self, client: ProtocolClient, on_host_gone, interval: float = 5.0):
        self._client = client
        self._on_host_gone = on_host_gone
        self._interval = interval
        self._task: asyncio.Task | None = None
        self.probes = 0

    async def probe(self) -> bool:
        self.probes += 1
        try:
            await self._client.probe_version()
            return True
        except CollectorError as e:
            logger.info("Liveness probe failed: %s", e)
            return False

    async def run(self):
        while True:
            await asyncio.sleep(self._interval)
            if not await self.probe():
                await self._on_host_gone()
                return

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        self._task.add_done_callback(self._report_crash)
        return self._task

    @staticmethod
    def _report_crash(task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            logger.error("Liveness monitor crashed: %r", task.exception())

    async def stop(self):
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
