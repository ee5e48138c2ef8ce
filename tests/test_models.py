"""Tests for the message and scenario models."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from mcp_compliance.errors import ConfigurationError
from mcp_compliance.models import (
    InterceptorConfig,
    JSONRPCMessage,
    MessageMetadata,
    ScenarioCatalog,
    Transport,
    utc_timestamp,
)


@pytest.mark.parametrize(
    "raw,kind",
    [
        ({"jsonrpc": "2.0", "id": 1, "method": "ping"}, "request"),
        ({"jsonrpc": "2.0", "id": "abc", "method": "tools/list", "params": {}}, "request"),
        ({"jsonrpc": "2.0", "method": "notifications/initialized"}, "notification"),
        ({"jsonrpc": "2.0", "id": 1, "result": {}}, "response"),
        ({"jsonrpc": "2.0", "id": 1.5, "method": "ping"}, "request"),
        ({"jsonrpc": "2.0", "id": 2.5, "result": {}}, "response"),
        ({"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "Method not found"}}, "error"),
        ({"jsonrpc": "2.0", "id": None, "error": {"code": -32700, "message": "Parse error"}}, "error"),
    ],
)
def test_message_kinds(raw, kind):
    """Test that each message shape is accepted and classified."""
    assert JSONRPCMessage.model_validate(raw).kind == kind


@pytest.mark.parametrize(
    "raw",
    [
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        {"jsonrpc": "2.0", "id": 1},
        {"jsonrpc": "2.0", "id": 1, "result": {}, "error": {"code": 1, "message": "x"}},
        {"jsonrpc": "2.0", "result": {}},
        {"jsonrpc": "2.0", "id": None, "result": {}},
        {"jsonrpc": "2.0", "id": True, "method": "ping"},
        {"jsonrpc": "2.0", "id": False, "result": {}},
        {"jsonrpc": "2.0", "id": 1, "result": {}, "params": {}},
        {"jsonrpc": "2.0", "id": 1, "error": {"code": "bad", "message": "x"}},
    ],
)
def test_message_rejects_invalid_shapes(raw):
    """Test that malformed JSON-RPC shapes are rejected."""
    with pytest.raises(ValidationError):
        JSONRPCMessage.model_validate(raw)


def test_message_wire_form_keeps_original_members():
    """Test that serialization reproduces what was on the wire."""
    raw = {"jsonrpc": "2.0", "id": 7, "result": None, "_meta": {"progress": 1}}
    message = JSONRPCMessage.model_validate(raw)

    assert message.to_wire() == raw

    # An absent id is not invented for notifications
    notification = JSONRPCMessage.model_validate({"jsonrpc": "2.0", "method": "x"})
    assert "id" not in notification.to_wire()


def test_metadata_rejects_bad_timestamp():
    """Test timestamp validation on message metadata."""
    with pytest.raises(ValidationError):
        MessageMetadata(sender="client", recipient="server", timestamp="yesterday", transport="stdio")


@pytest.mark.parametrize(
    "timestamp",
    [
        "2025-01-01T00:00:00.123Z",
        "2025-01-01T00:00:00.123456789Z",
        "2025-01-01T00:00:00+02:00",
        "2025-01-01T00:00:00.5-0500",
        "2025-01-01 00:00:00",
    ],
)
def test_metadata_accepts_iso_8601_variants(timestamp):
    """Test timestamps from other implementations, including nanosecond fractions."""
    metadata = MessageMetadata(sender="client", recipient="server", timestamp=timestamp, transport="stdio")
    assert metadata.timestamp == timestamp


def test_utc_timestamp_format():
    """Test capture timestamps are ISO-8601 UTC with milliseconds."""
    stamp = utc_timestamp()

    assert stamp.endswith("Z")
    assert len(stamp.split(".")[1]) == 4  # three digits plus Z
    parsed = datetime.fromisoformat(stamp.replace("Z", "+00:00"))
    assert parsed.utcoffset().total_seconds() == 0


def test_catalog_validation(scenarios_data):
    """Test a valid catalog and scenario lookup."""
    catalog = ScenarioCatalog.model_validate(scenarios_data)

    assert catalog.get_scenario(1).server_name == "echo"
    assert catalog.get_scenario(99) is None
    assert catalog.get_scenario(1).transport == Transport.STDIO
    assert catalog.get_scenario(2).transport == Transport.SSE
    assert "greet" in catalog.servers["echo"].prompt_templates


def test_catalog_rejects_duplicate_ids(scenarios_data):
    """Test duplicate scenario ids are reported."""
    scenarios_data["scenarios"][1]["id"] = 1

    with pytest.raises(ValidationError, match="Duplicate scenario ID: 1"):
        ScenarioCatalog.model_validate(scenarios_data)


def test_catalog_rejects_unknown_server(scenarios_data):
    """Test scenarios must reference a defined server."""
    scenarios_data["scenarios"][0]["server_name"] = "missing"

    with pytest.raises(ValidationError, match="Scenario 1 references non-existent server: missing"):
        ScenarioCatalog.model_validate(scenarios_data)


@pytest.mark.parametrize(
    "change",
    [
        {"id": 0},
        {"id": "1"},
        {"client_ids": []},
        {"description": ""},
    ],
)
def test_catalog_rejects_bad_scenarios(scenarios_data, change):
    """Test per-scenario field constraints."""
    scenarios_data["scenarios"][0].update(change)

    with pytest.raises(ValidationError):
        ScenarioCatalog.model_validate(scenarios_data)


def test_interceptor_config_requirements():
    """Test transport-specific settings are checked before start."""
    with pytest.raises(ConfigurationError, match="command"):
        InterceptorConfig(transport="stdio").validate_for_start()

    with pytest.raises(ConfigurationError, match="--port"):
        InterceptorConfig(transport="sse", target_url="http://localhost:3000").validate_for_start()

    with pytest.raises(ConfigurationError, match="target URL"):
        InterceptorConfig(transport="streamable-http", listen_port=8080).validate_for_start()

    config = InterceptorConfig(transport="sse", listen_port=0, target_url="http://localhost:3000")
    config.validate_for_start()
    assert config.client_id == "client"
    assert config.server_id == "server"
