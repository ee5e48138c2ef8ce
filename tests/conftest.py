"""Shared fixtures for the compliance harness tests."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from mcp_compliance.models import AnnotatedMessage

TIMESTAMP = "2025-01-01T00:00:00.000Z"


def build_annotated(
    message: Dict[str, Any],
    sender: str = "client",
    recipient: str = "server",
    transport: str = "stdio",
    timestamp: str = TIMESTAMP,
    http: Optional[Dict[str, Any]] = None,
) -> AnnotatedMessage:
    metadata: Dict[str, Any] = {
        "sender": sender,
        "recipient": recipient,
        "timestamp": timestamp,
        "transport": transport,
    }
    if http is not None:
        metadata["streamable_http_metadata"] = http
    return AnnotatedMessage.model_validate({"message": message, "metadata": metadata})


def make_sdk(root: Path, name: str) -> Path:
    """Create an SDK directory whose test-client and test-server exit 0."""
    sdk = root / name
    sdk.mkdir(parents=True)
    for binary_name in ("test-client", "test-server"):
        binary = sdk / binary_name
        binary.write_text("#!/bin/sh\nexit 0\n")
        binary.chmod(0o755)
    return sdk


@pytest.fixture
def annotated() -> Callable[..., AnnotatedMessage]:
    """Factory for annotated messages with fixed metadata defaults."""
    return build_annotated


@pytest.fixture
def initialize_exchange() -> List[AnnotatedMessage]:
    """A minimal initialize handshake as seen on the stdio transport."""
    return [
        build_annotated({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {"protocolVersion": "2025-03-26", "capabilities": {}},
        }),
        build_annotated(
            {"jsonrpc": "2.0", "id": 1, "result": {"protocolVersion": "2025-03-26", "capabilities": {}}},
            sender="server",
            recipient="client",
        ),
        build_annotated({"jsonrpc": "2.0", "method": "notifications/initialized"}),
    ]


@pytest.fixture
def write_capture(tmp_path: Path) -> Callable[..., Path]:
    """Write a capture file from annotated messages and optional comment lines."""

    def _write(name: str, messages: List[AnnotatedMessage], comments: Optional[List[str]] = None) -> Path:
        path = tmp_path / name
        lines = [f"// {comment}" for comment in comments or []]
        lines.extend(message.to_json_line() for message in messages)
        path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def scenarios_data() -> Dict[str, Any]:
    """A small valid scenario catalog."""
    return {
        "servers": {
            "echo": {
                "description": "Echo server",
                "tools": {"echo": {"description": "Echo the input"}},
                "resources": {},
                "resourceTemplates": {},
                "prompts": {},
                "promptTemplates": {
                    "greet": {"description": "Greeting", "params": {"name": {"description": "Who"}}},
                },
            },
        },
        "scenarios": [
            {
                "id": 1,
                "description": "Client connects and calls echo",
                "client_ids": ["client1"],
                "server_name": "echo",
            },
            {
                "id": 2,
                "description": "Same over HTTP",
                "client_ids": ["client1"],
                "server_name": "echo",
                "http_only": True,
            },
        ],
    }


@pytest.fixture
def scenarios_file(tmp_path: Path, scenarios_data: Dict[str, Any]) -> Path:
    path = tmp_path / "data.json"
    path.write_text(json.dumps(scenarios_data), encoding="utf-8")
    return path


@pytest.fixture
def sdk_root(tmp_path: Path) -> Path:
    """Two SDK directories with (non-functional) client and server executables."""
    root = tmp_path / "sdks"
    for name in ("python-sdk", "typescript-sdk"):
        make_sdk(root, name)
    return root
