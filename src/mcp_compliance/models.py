"""Data models for the MCP compliance harness."""

import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
    model_validator,
)

from .errors import ConfigurationError
from .shared.config import Config

JSONRPC_VERSION = "2.0"

ISO_8601 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}(:?\d{2})?)?$",
    re.IGNORECASE,
)


class Transport(str, Enum):
    """Wire transport a message was captured on."""

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"


class HttpInteraction(str, Enum):
    """HTTP interaction shape that carried a streamable-http message."""

    POST = "POST"          # JSON body in, JSON body out
    POST_SSE = "POST-SSE"  # POST answered with an event stream
    GET_SSE = "GET-SSE"    # standalone server-to-client event stream


class DifferenceKind(str, Enum):
    """Class of divergence reported by the comparator."""

    MISSING_MESSAGE = "MissingMessage"
    EXTRA_MESSAGE = "ExtraMessage"
    CONTENT_MISMATCH = "ContentMismatch"


def utc_timestamp() -> str:
    """Capture-time timestamp, ISO-8601 UTC with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def canonical_json(value: Any) -> str:
    """Key-order independent serialization used for structural equality."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class JSONRPCErrorObject(BaseModel):
    """The ``error`` member of a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow", frozen=True)

    code: StrictInt
    message: StrictStr
    data: Optional[Any] = None


class JSONRPCMessage(BaseModel):
    """A single JSON-RPC 2.0 message: request, notification, response or error.

    Exactly one of ``method``, ``result`` and ``error`` is present. Members
    that were not on the wire stay unset so that serialization reproduces the
    original shape (``"result": null`` is kept, an absent ``id`` is not
    invented).
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    jsonrpc: Literal["2.0"]
    id: Optional[Union[StrictStr, StrictInt, StrictFloat]] = None
    method: Optional[StrictStr] = None
    params: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[JSONRPCErrorObject] = None

    @model_validator(mode="after")
    def check_shape(self) -> "JSONRPCMessage":
        present = [name for name in ("method", "result", "error") if name in self.model_fields_set]
        if len(present) != 1:
            raise ValueError(
                f"exactly one of method, result or error must be present, got {present or 'none'}"
            )

        kind = present[0]
        if kind == "method":
            if self.method is None:
                raise ValueError("method must be a string")
            if "id" in self.model_fields_set and self.id is None:
                raise ValueError("request id must be a string or number")
        else:
            if "id" not in self.model_fields_set:
                raise ValueError(f"{kind} message requires an id")
            if "params" in self.model_fields_set:
                raise ValueError("params is only allowed on requests and notifications")
            if kind == "result" and self.id is None:
                raise ValueError("response id must be a string or number")
            if kind == "error" and self.error is None:
                raise ValueError("error must be an object")
        return self

    @property
    def kind(self) -> str:
        """One of ``request``, ``notification``, ``response`` or ``error``."""
        if "method" in self.model_fields_set:
            return "request" if "id" in self.model_fields_set else "notification"
        if "result" in self.model_fields_set:
            return "response"
        return "error"

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict with only the members that were present."""
        return self.model_dump(mode="json", exclude_unset=True)


class StreamableHttpMetadata(BaseModel):
    """HTTP shape and protocol-relevant headers of a streamable-http message."""

    model_config = ConfigDict(frozen=True)

    method: HttpInteraction
    headers: Dict[str, StrictStr]


class MessageMetadata(BaseModel):
    """Delivery metadata attached to every captured message."""

    model_config = ConfigDict(frozen=True)

    sender: str = Field(..., min_length=1)
    recipient: str = Field(..., min_length=1)
    timestamp: str = Field(..., description="ISO-8601 capture time")
    transport: Transport
    streamable_http_metadata: Optional[StreamableHttpMetadata] = None

    @field_validator("timestamp")
    @classmethod
    def check_timestamp(cls, value: str) -> str:
        if not ISO_8601.fullmatch(value):
            raise ValueError(f"timestamp is not ISO-8601: {value!r}")
        return value


class AnnotatedMessage(BaseModel):
    """A protocol message plus the metadata recorded when it was observed."""

    model_config = ConfigDict(frozen=True)

    message: JSONRPCMessage
    metadata: MessageMetadata

    def to_json_line(self) -> str:
        """Serialize as one capture-file line (without the trailing newline)."""
        return json.dumps(self.model_dump(mode="json", exclude_unset=True), ensure_ascii=False)


class Capture(BaseModel):
    """A parsed capture file."""

    description: Optional[str] = None
    messages: List[AnnotatedMessage] = Field(default_factory=list)


class NormalizedMetadata(BaseModel):
    """Metadata with the run-dependent members removed."""

    model_config = ConfigDict(frozen=True)

    sender: str
    recipient: str
    transport: Transport
    streamable_http_metadata: Optional[StreamableHttpMetadata] = None


class NormalizedMessage(BaseModel):
    """Comparable projection of an :class:`AnnotatedMessage`."""

    model_config = ConfigDict(frozen=True)

    message: JSONRPCMessage
    metadata: NormalizedMetadata

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)

    def canonical(self) -> str:
        return canonical_json(self.to_dict())


class Difference(BaseModel):
    """One positional divergence between expected and actual logs."""

    index: int
    reason: DifferenceKind
    expected: Optional[NormalizedMessage] = None
    actual: Optional[NormalizedMessage] = None

    def to_dict(self) -> Dict[str, Any]:
        """Report form; the side that has no message is ``None``."""
        return {
            "index": self.index,
            "reason": self.reason.value,
            "expected": self.expected.to_dict() if self.expected is not None else None,
            "actual": self.actual.to_dict() if self.actual is not None else None,
        }


class ComparisonResult(BaseModel):
    """Outcome of comparing two normalized logs."""

    match: bool
    differences: Optional[List[Difference]] = None

    @property
    def first_difference(self) -> Optional[Difference]:
        if not self.differences:
            return None
        return self.differences[0]

    def to_dict(self) -> Dict[str, Any]:
        report: Dict[str, Any] = {"match": self.match}
        if self.differences is not None:
            report["differences"] = [difference.to_dict() for difference in self.differences]
        return report


class HasDescription(BaseModel):
    description: str = Field(..., min_length=1)


class TemplateDefinition(HasDescription):
    params: Dict[str, HasDescription]


class ServerDefinition(HasDescription):
    """A toy server's advertised surface, as listed in the scenario catalog."""

    model_config = ConfigDict(populate_by_name=True)

    tools: Dict[str, HasDescription]
    resources: Dict[str, HasDescription]
    resource_templates: Dict[str, TemplateDefinition] = Field(..., alias="resourceTemplates")
    prompts: Dict[str, HasDescription]
    prompt_templates: Dict[str, TemplateDefinition] = Field(..., alias="promptTemplates")


class Scenario(BaseModel):
    """A numbered interaction script."""

    id: StrictInt = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    client_ids: List[str] = Field(..., min_length=1)
    server_name: str = Field(..., min_length=1)
    http_only: Optional[StrictBool] = None

    @property
    def transport(self) -> Transport:
        return Transport.SSE if self.http_only else Transport.STDIO


class ScenarioCatalog(BaseModel):
    """The scenario catalog: servers keyed by name plus the scenario list."""

    servers: Dict[str, ServerDefinition]
    scenarios: List[Scenario]

    @model_validator(mode="after")
    def check_integrity(self) -> "ScenarioCatalog":
        seen = set()
        for scenario in self.scenarios:
            if scenario.id in seen:
                raise ValueError(f"Duplicate scenario ID: {scenario.id}")
            seen.add(scenario.id)

        for scenario in self.scenarios:
            if scenario.server_name not in self.servers:
                raise ValueError(
                    f"Scenario {scenario.id} references non-existent server: {scenario.server_name}"
                )
        return self

    def get_scenario(self, scenario_id: int) -> Optional[Scenario]:
        for scenario in self.scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None


class ScenarioResult(BaseModel):
    """Result of running one scenario for a client/server SDK pair."""

    scenario_id: int
    client_sdk: str
    server_sdk: str
    transport: Transport
    success: bool
    error: Optional[str] = None
    captured_log: List[AnnotatedMessage] = Field(default_factory=list)
    comparison: Optional[ComparisonResult] = None
    duration_ms: float = 0.0


class InterceptorConfig(BaseModel):
    """Settings for one interceptor instance, as given on the command line."""

    transport: Transport
    log_file: Optional[str] = None
    client_id: str = Field(default_factory=lambda: Config.MITM_CLIENT_ID, min_length=1)
    server_id: str = Field(default_factory=lambda: Config.MITM_SERVER_ID, min_length=1)
    scenario_id: Optional[int] = None

    # HTTP transports
    listen_host: str = Field(default_factory=lambda: Config.MITM_LISTEN_HOST)
    listen_port: Optional[int] = Field(default=None, ge=0, le=65535)
    target_url: Optional[str] = None

    # stdio
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)

    def validate_for_start(self) -> None:
        """Check that the transport-specific settings are present."""
        if self.transport == Transport.STDIO:
            if not self.command:
                raise ConfigurationError("A server command is required for stdio transport")
            return

        if self.listen_port is None:
            raise ConfigurationError(f"--port is required for {self.transport.value} transport")
        if not self.target_url:
            raise ConfigurationError(f"A target URL is required for {self.transport.value} transport")
        if not self.target_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Target URL must be http(s): {self.target_url}")
