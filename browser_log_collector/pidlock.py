"""Process lock file holding the collector's pid."""

import logging
import os

import psutil

logger = logging.getLogger(__name__)

DEFAULT_PID_FILE = "/tmp/browser-log-collector.pid"


class PidLock:
    """Single-line pid file. A file left by an unclean exit may be stale."""

    def __init__(self, path: str = DEFAULT_PID_FILE):
        self.path = path

    def read_pid(self) -> int | None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None

    def holder_alive(self) -> bool:
        """True if the file names another process that is still running."""
        pid = self.read_pid()
        return pid is not None and pid != os.getpid() and psutil.pid_exists(pid)

    def acquire(self):
        if self.holder_alive():
            logger.warning("Pid file %s names running process %d; taking it over",
                           self.path, self.read_pid())
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))

    def release(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Cannot remove pid file %s: %s", self.path, e)
