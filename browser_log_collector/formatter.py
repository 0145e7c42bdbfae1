"""Entry formatter: maps raw DevTools event payloads to canonical log entries.

One pure function per feed. Each returns a LogEntry, or None when the event
should be suppressed. Payloads that do not have the expected shape raise
FormatError.
"""

import functools

from browser_log_collector.errors import FormatError
from browser_log_collector.models import (
    CATEGORY_COLLECTOR,
    CATEGORY_EXCEPTION,
    CATEGORY_HTTP,
    CATEGORY_NETWORK,
    LogEntry,
    utc_timestamp,
)

LEVEL_MAP = {
    "log": "log",
    "info": "info",
    "warning": "warn",
    "warn": "warn",
    "error": "error",
    "debug": "debug",
    "trace": "debug",
    "dir": "log",
    "table": "log",
    "assert": "error",
    "exception": "error",
}

ABORTED_LOAD = "net::ERR_ABORTED"
ELLIPSIS = "..."


def normalize_level(kind) -> str:
    """Map a console call type or log entry level onto the fixed level set."""
    return LEVEL_MAP.get(kind, "log")


def _malformed_as_format_error(func):
    """Turn lookup/type errors from a malformed payload into FormatError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise FormatError(f"{func.__name__}: {e!r}") from e

    return wrapper


def _primitive_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if value is None:
        return "null"
    return str(value)


def _preview_text(preview: dict) -> str:
    properties = preview.get("properties") or []
    if preview.get("subtype") == "array" or preview.get("type") == "array":
        items = [p.get("value", p.get("type", "")) for p in properties]
        if preview.get("overflow"):
            items.append(ELLIPSIS)
        return "[" + ", ".join(items) + "]"
    items = [f"{p['name']}: {p.get('value', p.get('type', ''))}" for p in properties]
    if preview.get("overflow"):
        items.append(ELLIPSIS)
    return "{" + ", ".join(items) + "}"


def render_argument(arg: dict) -> str:
    """Render a single Runtime.RemoteObject the way the console would print it."""
    kind = arg.get("type")
    if "unserializableValue" in arg:
        return arg["unserializableValue"]
    if kind == "string":
        return arg.get("value") or ""
    if kind in ("number", "boolean", "bigint"):
        return _primitive_text(arg.get("value"))
    if kind == "undefined":
        return "undefined"
    if kind == "object":
        if arg.get("subtype") == "null":
            return "null"
        if arg.get("preview"):
            return _preview_text(arg["preview"])
        return arg.get("description") or "[object]"
    if kind == "function":
        return arg.get("description") or "[function]"
    if arg.get("description"):
        return arg["description"]
    if arg.get("value") is not None:
        return _primitive_text(arg["value"])
    return str(kind)


def render_arguments(args) -> str:
    if not args:
        return ""
    return " ".join(render_argument(arg) for arg in args)


@_malformed_as_format_error
def format_console_call(params: dict) -> LogEntry:
    """Runtime.consoleAPICalled"""
    frames = (params.get("stackTrace") or {}).get("callFrames") or []
    location = frames[0] if frames else {}
    return LogEntry(
        timestamp=utc_timestamp(),
        level=normalize_level(params.get("type")),
        message=render_arguments(params.get("args")),
        source_url=location.get("url"),
        source_line=location.get("lineNumber"),
    )


@_malformed_as_format_error
def format_exception(params: dict) -> LogEntry:
    """Runtime.exceptionThrown"""
    details = params["exceptionDetails"]
    exception = details.get("exception") or {}
    message = exception.get("description") or exception.get("value") or details.get("text", "")
    return LogEntry(
        timestamp=utc_timestamp(),
        level="error",
        category=CATEGORY_EXCEPTION,
        message=_primitive_text(message),
        source_url=details.get("url"),
        source_line=details.get("lineNumber"),
    )


@_malformed_as_format_error
def format_log_entry(params: dict) -> LogEntry:
    """Log.entryAdded"""
    entry = params["entry"]
    extra = {"source": entry["source"]} if entry.get("source") else {}
    return LogEntry(
        timestamp=utc_timestamp(),
        level=normalize_level(entry.get("level")),
        message=entry.get("text") or "",
        source_url=entry.get("url"),
        source_line=entry.get("lineNumber"),
        extra=extra,
    )


@_malformed_as_format_error
def format_loading_failed(params: dict) -> LogEntry | None:
    """Network.loadingFailed. Aborted loads are navigation noise and dropped."""
    reason = params["errorText"]
    if reason == ABORTED_LOAD:
        return None
    return LogEntry(
        timestamp=utc_timestamp(),
        level="error",
        category=CATEGORY_NETWORK,
        message=f"{reason} ({params.get('type', 'Other')})",
    )


@_malformed_as_format_error
def format_response(params: dict) -> LogEntry | None:
    """Network.responseReceived. Only HTTP errors (status >= 400) are kept."""
    response = params["response"]
    status = int(response["status"])
    if status < 400:
        return None
    url = response.get("url", "").split("?")[0]
    return LogEntry(
        timestamp=utc_timestamp(),
        level="error",
        category=CATEGORY_HTTP,
        message=f"HTTP {status}: {url}",
        extra={"status": status},
    )


def collector_entry(message: str, level: str = "info") -> LogEntry:
    """An entry describing the collector's own lifecycle."""
    return LogEntry(
        timestamp=utc_timestamp(),
        level=level,
        category=CATEGORY_COLLECTOR,
        message=message,
    )


def placeholder_entry(method: str, error: Exception) -> LogEntry:
    """Stand-in for an event that could not be formatted."""
    return collector_entry(f"Unreadable {method} event ({error})", level="warn")


FORMATTERS = {
    "Runtime.consoleAPICalled": format_console_call,
    "Runtime.exceptionThrown": format_exception,
    "Log.entryAdded": format_log_entry,
    "Network.loadingFailed": format_loading_failed,
    "Network.responseReceived": format_response,
}
