"""Error taxonomy for the collector."""


class CollectorError(Exception):
    """Base class for every error raised by the collector."""


class ProtocolConnectionError(CollectorError, ConnectionError):
    """The host or a target cannot be reached, or the connection dropped."""


class CommandError(CollectorError):
    """The host answered a protocol command with an error."""

    def __init__(self, method: str, error):
        self.method = method
        self.error = error
        message = error.get("message", error) if isinstance(error, dict) else error
        super().__init__(f"{method} failed: {message}")


class SubscriptionError(CollectorError):
    """A feed could not be enabled on a target."""


class PersistenceError(CollectorError):
    """The output artifact cannot be written. Fatal for the whole collector."""


class FormatError(CollectorError):
    """An event payload did not have the expected shape."""


class StartupError(CollectorError):
    """Start-up cannot proceed: host unreachable or nothing to observe."""
