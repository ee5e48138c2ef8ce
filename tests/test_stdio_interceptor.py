"""Tests for the stdio interceptor, using a child Python process as the server."""

import asyncio
import io
import json
import sys

import pytest

from mcp_compliance.capture import CaptureCollector
from mcp_compliance.errors import ConfigurationError
from mcp_compliance.interceptors import StdioInterceptor
from mcp_compliance.models import Transport

ECHO_SERVER = """
import json, sys
print("echo server starting", flush=True)
for line in sys.stdin:
    line = line.strip()
    if not line:
        continue
    message = json.loads(line)
    if "id" in message:
        reply = {"jsonrpc": "2.0", "id": message["id"], "result": {"echo": message["method"]}}
        sys.stdout.write(json.dumps(reply) + "\\n")
        sys.stdout.flush()
"""

SLEEPY_SERVER = "import time; time.sleep(30)"


def client_input(*lines: str) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for line in lines:
        reader.feed_data(line.encode())
    reader.feed_eof()
    return reader


@pytest.mark.asyncio
async def test_stdio_relays_and_records():
    """Test bytes pass through unmodified while messages are recorded in order."""
    request = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}) + "\n"
    notification = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}) + "\n"
    output = io.BytesIO()
    collector = CaptureCollector()

    interceptor = StdioInterceptor(
        sys.executable,
        ["-c", ECHO_SERVER],
        client_id="client1",
        server_id="echo",
        observer=collector,
        client_input=client_input(request, notification),
        client_output=output,
    )
    await interceptor.start()
    try:
        returncode = await asyncio.wait_for(interceptor.wait(), timeout=10)
    finally:
        await interceptor.close()

    assert returncode == 0

    relayed = output.getvalue().decode().splitlines()
    assert relayed[0] == "echo server starting"
    assert json.loads(relayed[1]) == {"jsonrpc": "2.0", "id": 1, "result": {"echo": "initialize"}}

    kinds = [(m.metadata.sender, m.metadata.recipient, m.message.kind) for m in collector.messages]
    assert kinds == [
        ("client1", "echo", "request"),
        ("client1", "echo", "notification"),
        ("echo", "client1", "response"),
    ]
    assert all(m.metadata.transport == Transport.STDIO for m in collector.messages)
    assert all(m.metadata.streamable_http_metadata is None for m in collector.messages)
    assert interceptor.recorded == 3


@pytest.mark.asyncio
async def test_stdio_close_terminates_running_server():
    """Test close stops a child that never exits on its own, and is idempotent."""
    interceptor = StdioInterceptor(
        sys.executable,
        ["-c", SLEEPY_SERVER],
        client_id="client",
        server_id="server",
        client_input=asyncio.StreamReader(),
        client_output=io.BytesIO(),
        grace_period=1,
    )
    await interceptor.start()
    assert interceptor.process.returncode is None

    await interceptor.close()
    assert interceptor.process.returncode is not None

    await interceptor.close()


@pytest.mark.asyncio
async def test_stdio_missing_command_binary():
    """Test a command that cannot be spawned raises from start."""
    interceptor = StdioInterceptor(
        "/nonexistent/test-server",
        client_id="client",
        server_id="server",
        client_input=asyncio.StreamReader(),
        client_output=io.BytesIO(),
    )

    with pytest.raises(OSError):
        await interceptor.start()
    await interceptor.close()


def test_stdio_requires_command():
    """Test a missing command is a configuration error."""
    with pytest.raises(ConfigurationError):
        StdioInterceptor("", client_id="client", server_id="server")
