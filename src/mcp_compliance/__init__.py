"""MCP compliance harness: transport interceptors, capture validation and log comparison."""

__version__ = "0.1.0"

from .comparator import compare_captures, compare_logs
from .errors import (
    CaptureParseError,
    CaptureValidationError,
    ComplianceError,
    ConfigurationError,
    ForwardingError,
    ScenarioRunError,
    ScenarioValidationError,
)
from .models import AnnotatedMessage, ComparisonResult, JSONRPCMessage, NormalizedMessage, Transport
from .validation import normalize_log, parse_capture, validate_log

__all__ = [
    "__version__",
    "AnnotatedMessage",
    "CaptureParseError",
    "CaptureValidationError",
    "ComparisonResult",
    "ComplianceError",
    "ConfigurationError",
    "ForwardingError",
    "JSONRPCMessage",
    "NormalizedMessage",
    "ScenarioRunError",
    "ScenarioValidationError",
    "Transport",
    "compare_captures",
    "compare_logs",
    "normalize_log",
    "parse_capture",
    "validate_log",
]
