"""Capture parsing, schema validation and normalization."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from .capture import COMMENT_PREFIX, format_description, serialize_annotated
from .errors import CaptureParseError, CaptureValidationError, ScenarioValidationError
from .models import (
    AnnotatedMessage,
    Capture,
    NormalizedMessage,
    NormalizedMetadata,
    ScenarioCatalog,
    StreamableHttpMetadata,
)

# Headers that vary run to run and carry no protocol meaning
VOLATILE_HEADERS = frozenset({"date", "x-request-id", "x-trace-id", "user-agent"})

COMMENT_MARKER = COMMENT_PREFIX.rstrip()


def validate_scenarios(data: Any) -> ScenarioCatalog:
    """Validate a scenario catalog: schema, unique ids and server references."""
    try:
        return ScenarioCatalog.model_validate(data)
    except ValidationError as e:
        raise ScenarioValidationError(f"Invalid scenarios data: {e}") from e


def load_scenarios(path: Union[str, Path]) -> ScenarioCatalog:
    """Load and validate the scenario catalog JSON file."""
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ScenarioValidationError(f"Scenario catalog not found: {path}") from e
    except ValueError as e:
        raise ScenarioValidationError(f"Scenario catalog is not valid JSON: {path}: {e}") from e
    return validate_scenarios(data)


def validate_log(data: Any) -> List[AnnotatedMessage]:
    """Validate an in-memory log (a list of annotated message dicts or models)."""
    if not isinstance(data, list):
        raise CaptureValidationError(-1, data, "Log must be an array")

    messages = []
    for index, entry in enumerate(data):
        if isinstance(entry, AnnotatedMessage):
            entry = entry.model_dump(mode="json", exclude_unset=True)
        try:
            messages.append(AnnotatedMessage.model_validate(entry))
        except ValidationError as e:
            raise CaptureValidationError(index, entry, str(e)) from e
    return messages


def parse_capture_text(text: str) -> Capture:
    """Parse capture content: ``//`` comment lines plus one JSON message per line."""
    comment_lines: List[str] = []
    messages: List[AnnotatedMessage] = []

    for index, line in enumerate(text.split("\n")):
        if not line.strip():
            continue

        if line.startswith(COMMENT_MARKER):
            comment_lines.append(line[len(COMMENT_MARKER):].strip())
            continue

        try:
            value = json.loads(line)
        except ValueError as e:
            raise CaptureParseError(index, line, f"Invalid JSON: {e}") from e

        try:
            messages.append(AnnotatedMessage.model_validate(value))
        except ValidationError as e:
            raise CaptureParseError(index, line, f"Invalid message: {e}") from e

    return Capture(
        description="\n".join(comment_lines) if comment_lines else None,
        messages=messages,
    )


def parse_capture(path: Union[str, Path]) -> Capture:
    """Read and parse a JSON-Lines capture file."""
    return parse_capture_text(Path(path).read_text(encoding="utf-8"))


def normalize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Drop volatile headers (case-insensitively) and sort the rest by key."""
    kept = [(key, value) for key, value in headers.items() if key.lower() not in VOLATILE_HEADERS]
    return dict(sorted(kept, key=lambda item: item[0]))


def normalize_message(message: AnnotatedMessage) -> NormalizedMessage:
    metadata = message.metadata
    fields: Dict[str, Any] = {
        "sender": metadata.sender,
        "recipient": metadata.recipient,
        "transport": metadata.transport,
    }
    http = metadata.streamable_http_metadata
    if http is not None:
        fields["streamable_http_metadata"] = StreamableHttpMetadata(
            method=http.method,
            headers=normalize_headers(http.headers),
        )
    return NormalizedMessage(message=message.message, metadata=NormalizedMetadata(**fields))


def normalize_log(messages: Iterable[AnnotatedMessage]) -> List[NormalizedMessage]:
    """Project messages onto their run-independent content, preserving order."""
    return [normalize_message(message) for message in messages]


def load_normalized(path: Union[str, Path]) -> List[NormalizedMessage]:
    """Parse, validate and normalize a capture file in one step."""
    capture = parse_capture(path)
    return normalize_log(validate_log(capture.messages))


def describe_capture(capture: Capture, limit: Optional[int] = None) -> List[str]:
    """One summary line per message, for CLI listings."""
    lines = []
    for index, message in enumerate(capture.messages[:limit]):
        wire = message.message
        label = wire.method if wire.method is not None else wire.kind
        lines.append(f"{index}: {message.metadata.sender} -> {message.metadata.recipient} {label}")
    return lines


def render_capture(capture: Capture) -> str:
    """Serialize a capture back to file content; the inverse of :func:`parse_capture_text`."""
    lines = format_description(capture.description) if capture.description else []
    lines.extend(serialize_annotated(message) for message in capture.messages)
    return "".join(line + "\n" for line in lines)
