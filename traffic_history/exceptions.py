"""
Custom exceptions for stream traffic history analysis.

Configuration problems are fatal to a run or a request. Missing individual
messages are not errors at all and never reach this hierarchy; empty results
produce empty structures instead of exceptions.
"""

from typing import Optional


class TrafficHistoryError(Exception):
    """Base exception for all traffic history errors."""

    pass


class ConfigurationError(TrafficHistoryError):
    """Raised for invalid or conflicting run/request options.

    Attributes:
        option: Name of the offending option (if known), e.g. "--granularity".
    """

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        self.option = option
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.option:
            return f"{base} (option: {self.option})"
        return base


class StreamDiscoveryError(TrafficHistoryError):
    """Raised when the server cannot list streams."""

    pass


class RetentionPolicyError(TrafficHistoryError):
    """Raised when a requested stream does not use limits retention.

    Attributes:
        stream: Name of the stream.
        policy: Retention policy the stream actually uses.
    """

    def __init__(self, stream: str, policy: str) -> None:
        self.stream = stream
        self.policy = policy
        super().__init__(f"stream {stream!r} has {policy} retention policy, not limits")


class FetchError(TrafficHistoryError):
    """Raised when a whole stream could not be fetched.

    Attributes:
        stream: Name of the stream that failed.
    """

    def __init__(self, message: str, stream: Optional[str] = None) -> None:
        self.stream = stream
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.stream:
            return f"{base} (stream: {self.stream})"
        return base


class StreamNotFoundError(TrafficHistoryError):
    """Raised when a query names a stream that is not part of the run."""

    def __init__(self, stream: str) -> None:
        self.stream = stream
        super().__init__(f"stream not found: {stream}")
