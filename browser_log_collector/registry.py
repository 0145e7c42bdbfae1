"""TargetRegistry: the set of live target sessions, kept in step with discovery."""

import asyncio
import logging

from browser_log_collector.errors import CollectorError, PersistenceError
from browser_log_collector.formatter import collector_entry
from browser_log_collector.models import LogEntry, ProtocolEvent, TargetDescriptor
from browser_log_collector.protocol import Connection, ProtocolClient
from browser_log_collector.session import TargetSession
from browser_log_collector.sink import RotatingLogSink

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 5.0


class TargetRegistry:
    """Maps target id to its session. At most one session per id, ever live at once.

    An id is reserved from the moment its connection starts, so a creation
    notification racing with start-up enumeration is a no-op.
    """

    def __init__(self, client: ProtocolClient, sink: RotatingLogSink,
                 target_types=("page",), on_fatal=None):
        self._client = client
        self._sink = sink
        self._target_types = set(target_types)
        self._on_fatal = on_fatal or (lambda error: None)
        self._sessions: dict[str, TargetSession] = {}
        self._connecting: set[str] = set()
        self._cancelled: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.closing = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, target_id: str) -> bool:
        return target_id in self._sessions

    def get(self, target_id: str) -> TargetSession | None:
        return self._sessions.get(target_id)

    @property
    def sessions(self) -> list[TargetSession]:
        return list(self._sessions.values())

    def accepts(self, target: TargetDescriptor) -> bool:
        return target.type in self._target_types

    async def record(self, entry: LogEntry):
        try:
            await self._sink.append(entry)
        except PersistenceError as e:
            self._on_fatal(e)

    async def add_if_absent(self, target: TargetDescriptor) -> bool:
        """Open a session for target unless one exists or is connecting. Returns True if added."""
        if self.closing or target.id in self._sessions or target.id in self._connecting:
            return False

        self._connecting.add(target.id)
        try:
            session = await TargetSession.open(self._client, target, self._sink)
        except CollectorError as e:
            self._cancelled.discard(target.id)
            logger.warning("Cannot attach to %s: %s", target.label, e)
            await self.record(collector_entry(f"Failed to attach to tab {target.label}: {e}", level="warn"))
            return False
        finally:
            self._connecting.discard(target.id)

        if self.closing or target.id in self._cancelled:
            self._cancelled.discard(target.id)
            logger.info("Target %s went away while connecting", target.label)
            await session.close()
            return False

        self._sessions[target.id] = session
        logger.info("Monitoring %s (%s)", target.label, target.id)
        await self.record(collector_entry(f"New tab: {target.label}"))
        session.start(self._session_closed, self._on_fatal)
        return True

    async def remove(self, target_id: str) -> bool:
        """Drop the session for target_id. Unknown ids are ignored."""
        if target_id in self._connecting:
            self._cancelled.add(target_id)
            return False

        session = self._sessions.pop(target_id, None)
        if session is None:
            return False

        await session.close()
        await session.wait_closed()
        if not self.closing:
            await self.record(collector_entry(f"Tab closed: {session.label}"))
        return True

    def update(self, target: TargetDescriptor):
        """Follow title/url changes of a monitored target."""
        session = self._sessions.get(target.id)
        if session is not None and target.label != session.label:
            logger.debug("Tab %s is now %s", session.label, target.label)
            session.label = target.label

    async def _session_closed(self, session: TargetSession):
        if self._sessions.get(session.target_id) is not session:
            return
        del self._sessions[session.target_id]
        logger.info("Connection to %s ended", session.label)
        if not self.closing:
            await self.record(collector_entry(f"Tab closed: {session.label}"))

    def _spawn(self, coro):
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def handle_notification(self, event: ProtocolEvent):
        """Apply one Target domain notification. Connect/close work runs in the background."""
        if event.method == "Target.targetCreated":
            target = TargetDescriptor.from_target_info(event.params["targetInfo"])
            if self.accepts(target):
                self._spawn(self.add_if_absent(target))
        elif event.method == "Target.targetDestroyed":
            self._spawn(self.remove(event.params["targetId"]))
        elif event.method == "Target.targetInfoChanged":
            self.update(TargetDescriptor.from_target_info(event.params["targetInfo"]))

    async def watch(self, discovery: Connection):
        """Consume discovery notifications until the channel closes."""
        async for event in discovery.events():
            try:
                self.handle_notification(event)
            except (KeyError, TypeError) as e:
                logger.warning("Malformed %s notification: %r", event.method, e)
        logger.info("Discovery channel closed")

    async def close_all(self):
        """Stop accepting targets and close every session."""
        self.closing = True
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()
        await asyncio.gather(*(session.wait_closed() for session in sessions))

        if self._tasks:
            _, pending = await asyncio.wait(list(self._tasks), timeout=SHUTDOWN_GRACE_SECONDS)
            if pending:
                logger.warning("%d target operation(s) still running at shutdown", len(pending))
