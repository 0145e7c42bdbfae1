"""Canonical log entry and target models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

LEVELS = ("log", "info", "warn", "error", "debug")

CATEGORY_EXCEPTION = "exception"
CATEGORY_NETWORK = "network"
CATEGORY_HTTP = "http"
CATEGORY_COLLECTOR = "collector"


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO 8601 UTC timestamp with millisecond precision, e.g. 2025-01-15T12:00:00.123Z"""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


@dataclass
class LogEntry:
    timestamp: str
    level: str                      # one of LEVELS
    message: str
    category: str | None = None     # exception, network, http, collector
    source_url: str | None = None
    source_line: int | None = None
    tab_label: str | None = None
    extra: dict = field(default_factory=dict)

    def to_record(self) -> dict:
        """Persisted form. Keys with no value are left out."""
        record = {
            "ts": self.timestamp,
            "level": self.level,
            "type": self.category,
            "message": self.message,
            "url": self.source_url,
            "line": self.source_line,
            "tab": self.tab_label,
        }
        record.update(self.extra)
        return {k: v for k, v in record.items() if v is not None}


@dataclass
class TargetDescriptor:
    id: str
    type: str
    title: str = ""
    url: str = ""
    ws_url: str | None = None

    @property
    def label(self) -> str:
        return self.title or self.url or self.id

    @classmethod
    def from_listing(cls, data: dict) -> "TargetDescriptor":
        """Build from an entry of the HTTP /json/list endpoint."""
        return cls(
            id=data["id"],
            type=data.get("type", ""),
            title=data.get("title", ""),
            url=data.get("url", ""),
            ws_url=data.get("webSocketDebuggerUrl"),
        )

    @classmethod
    def from_target_info(cls, info: dict) -> "TargetDescriptor":
        """Build from a Target domain targetInfo payload."""
        return cls(
            id=info["targetId"],
            type=info.get("type", ""),
            title=info.get("title", ""),
            url=info.get("url", ""),
        )


@dataclass(frozen=True)
class ProtocolEvent:
    method: str
    params: dict


class SessionState(Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSED = "closed"
