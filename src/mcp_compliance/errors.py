"""Exception hierarchy for the compliance harness."""

from typing import Any, Optional


class ComplianceError(Exception):
    """Base class for all harness errors."""


class FramingError(ComplianceError):
    """A line or chunk is not a protocol message.

    The codec never lets this escape: non-protocol output (banners, debug
    prints) shares the stream with protocol traffic and is dropped silently.
    """


class ForwardingError(ComplianceError):
    """Relaying a request to the target failed (unreachable, malformed response)."""

    def __init__(self, message: str, target_url: Optional[str] = None):
        super().__init__(message)
        self.target_url = target_url


class CaptureParseError(ComplianceError):
    """A capture file line is not JSON or not an annotated message."""

    def __init__(self, line_index: int, line: str, reason: str):
        self.line_index = line_index
        self.line = line
        self.reason = reason
        super().__init__(f"Failed to parse line {line_index}: {line}\n{reason}")


class CaptureValidationError(ComplianceError):
    """An entry of an in-memory log does not conform to the message schema."""

    def __init__(self, index: int, entry: Any, reason: str):
        self.index = index
        self.entry = entry
        self.reason = reason
        super().__init__(f"Invalid message at index {index}: {reason}")


class ScenarioValidationError(ComplianceError):
    """The scenario catalog is malformed or references unknown servers."""


class ConfigurationError(ComplianceError):
    """Interceptor or runner configuration is incomplete; raised before any I/O."""


class ScenarioRunError(ComplianceError):
    """A scenario could not be executed (missing binary, non-zero exit)."""
