"""Collector supervisor: start-up, run-until-stopped, and shutdown."""

import asyncio
import logging
import signal

from browser_log_collector.config import Config
from browser_log_collector.errors import CollectorError, ProtocolConnectionError, StartupError
from browser_log_collector.formatter import collector_entry
from browser_log_collector.monitor import LivenessMonitor
from browser_log_collector.pidlock import PidLock
from browser_log_collector.protocol import Connection, ProtocolClient, close_quietly
from browser_log_collector.registry import TargetRegistry
from browser_log_collector.sink import RotatingLogSink

logger = logging.getLogger(__name__)


class Collector:
    """Owns the sink, the registry, the discovery channel and the liveness monitor.

    Lifecycle: start() enumerates existing targets and subscribes to each
    before opening discovery; run() then waits for a stop request (signal,
    lost browser, or unwritable output) and performs shutdown() exactly once.
    """

    def __init__(self, config: Config, client: ProtocolClient,
                 sink: RotatingLogSink | None = None, lock: PidLock | None = None):
        self.config = config
        self._client = client
        self.sink = sink or RotatingLogSink(config.output, config.max_size_bytes)
        self.lock = lock or PidLock(config.pid_file)
        self.registry = TargetRegistry(client, self.sink, config.target_types, on_fatal=self.fail)
        self.monitor = LivenessMonitor(client, self.host_gone, interval=config.probe_interval)
        self.exit_code = 0
        self._stop = asyncio.Event()
        self._discovery: Connection | None = None
        self._discovery_task: asyncio.Task | None = None
        self._shut_down = False

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def start(self):
        """Raises StartupError, or PersistenceError if the output is unusable."""
        try:
            self.lock.acquire()
        except OSError as e:
            raise StartupError(f"Cannot write pid file {self.lock.path}: {e}") from e
        self.sink.rotate_if_oversized()

        try:
            targets = await self._client.list_targets()
        except ProtocolConnectionError as e:
            raise StartupError(
                f"Cannot connect to browser on {self.config.host}:{self.config.port}"
            ) from e

        targets = [t for t in targets if self.registry.accepts(t)]
        if not targets:
            raise StartupError(f"No browser targets of type {', '.join(self.config.target_types)} found")

        await self.sink.append(collector_entry(f"Log collector started (port {self.config.port})"))

        for target in targets:
            await self.registry.add_if_absent(target)
        if not len(self.registry):
            raise StartupError("Could not attach to any browser target")

        try:
            self._discovery = await self._client.open_discovery()
        except CollectorError as e:
            raise StartupError(f"Cannot open target discovery: {e}") from e
        self._discovery_task = asyncio.create_task(self.registry.watch(self._discovery))

        self.monitor.start()
        logger.info("Collecting from %d target(s) into %s", len(self.registry), self.sink.path)

    def install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                logger.debug("Signal handlers not supported on this platform")

    def request_stop(self, exit_code: int = 0):
        self.exit_code = max(self.exit_code, exit_code)
        self._stop.set()

    def fail(self, error: Exception):
        logger.error("Cannot persist entries, stopping: %s", error)
        self.request_stop(1)

    async def host_gone(self):
        await self.registry.record(collector_entry("Browser disconnected, shutting down"))
        self.request_stop(0)

    async def _release(self):
        await self.monitor.stop()
        await self.registry.close_all()
        if self._discovery is not None:
            await close_quietly(self._discovery, "discovery channel")
        if self._discovery_task is not None:
            # the channel is closed; nothing further from it is wanted
            self._discovery_task.cancel()
            await asyncio.gather(self._discovery_task, return_exceptions=True)
        self.lock.release()

    async def shutdown(self):
        """Record the stop, close everything. Safe to call more than once."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down...")
        await self.registry.record(collector_entry("Log collector stopped"))
        await self._release()
        logger.info("Collector stopped (%d entries written)", self.sink.entries_written)

    async def run(self) -> int:
        """Run until stopped. Returns the process exit code."""
        started = False
        try:
            await self.start()
            started = True
        except CollectorError as e:
            logger.error("%s", e)
            return 1
        finally:
            if not started:
                self._shut_down = True
                await self._release()

        await self._stop.wait()
        await self.shutdown()
        return self.exit_code
