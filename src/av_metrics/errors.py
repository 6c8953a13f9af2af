"""Error types raised by the metric engines and decoders."""


class MetricsError(Exception):
    """Base class for all errors raised by av_metrics."""


class InputMismatch(MetricsError, ValueError):
    """The two inputs cannot be compared with each other.

    Attributes:
        reason: Human-readable description of the mismatch.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class MalformedInput(MetricsError, ValueError):
    """An input is structurally invalid (bad plane layout, unreadable header)."""


class DecodeError(MetricsError, RuntimeError):
    """A decoder failed to produce the next frame."""
