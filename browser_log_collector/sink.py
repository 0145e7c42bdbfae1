"""Append-only JSONL sink with start-up size rotation to a single backup."""

import asyncio
import json
import logging
import os

import aiofiles

from browser_log_collector.errors import PersistenceError
from browser_log_collector.models import LogEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 10 * 1024 * 1024  # 10 MiB


def serialize(entry: LogEntry) -> str:
    """One compact JSON object terminated by a newline."""
    return json.dumps(entry.to_record(), ensure_ascii=False, separators=(",", ":")) + "\n"


class RotatingLogSink:
    """Owns the output artifact. Every append is written and flushed on its own."""

    def __init__(self, path: str, max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES):
        self.path = path
        self.backup_path = path + ".old"
        self.max_size_bytes = max_size_bytes
        self._lock = asyncio.Lock()
        self.entries_written = 0

    def rotate_if_oversized(self) -> str | None:
        """Move an oversized active file to the backup slot. Returns the backup path if rotated.

        Only called at start-up; appends never check the size.
        """
        try:
            size = os.path.getsize(self.path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot stat {self.path}: {e}") from e

        if size <= self.max_size_bytes:
            return None

        try:
            # os.replace drops any previous backup in the same rename
            os.replace(self.path, self.backup_path)
        except OSError as e:
            raise PersistenceError(f"Cannot rotate {self.path}: {e}") from e
        logger.info("Rotated %s (%d bytes) to %s", self.path, size, self.backup_path)
        return self.backup_path

    async def append(self, entry: LogEntry) -> None:
        line = serialize(entry)
        async with self._lock:
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                async with aiofiles.open(self.path, mode="a", encoding="utf-8") as f:
                    await f.write(line)
                    await f.flush()
            except OSError as e:
                raise PersistenceError(f"Cannot append to {self.path}: {e}") from e
            self.entries_written += 1
