"""Tests for capture sinks."""

from mcp_compliance.capture import (
    CaptureCollector,
    CaptureWriter,
    DiagnosticObserver,
    FanoutObserver,
    MessageObserver,
    describe_message,
    format_description,
)
from mcp_compliance.validation import parse_capture


def test_capture_writer_writes_description_and_messages(tmp_path, initialize_exchange):
    """Test the writer output parses back to the same capture."""
    path = tmp_path / "capture.jsonl"

    with CaptureWriter(path, "Scenario one\nsecond line") as writer:
        for message in initialize_exchange:
            writer.observe(message)
        assert writer.count == 3

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[:2] == ["// Scenario one", "// second line"]
    assert len(lines) == 5

    capture = parse_capture(path)
    assert capture.description == "Scenario one\nsecond line"
    assert capture.messages == initialize_exchange


def test_capture_writer_truncates(tmp_path, initialize_exchange):
    """Test opening a capture discards previous content."""
    path = tmp_path / "capture.jsonl"
    path.write_text("stale content\n", encoding="utf-8")

    writer = CaptureWriter(path)
    writer.observe(initialize_exchange[0])
    writer.close()

    assert "stale" not in path.read_text(encoding="utf-8")
    assert len(parse_capture(path).messages) == 1


def test_capture_writer_flushes_each_message(tmp_path, initialize_exchange):
    """Test each message is on disk before the writer is closed."""
    path = tmp_path / "capture.jsonl"
    writer = CaptureWriter(path)

    writer.observe(initialize_exchange[0])
    assert len(parse_capture(path).messages) == 1

    writer.close()


def test_capture_writer_close_is_idempotent(tmp_path, initialize_exchange):
    """Test closing twice is safe and late messages are ignored."""
    writer = CaptureWriter(tmp_path / "capture.jsonl")
    writer.close()
    writer.close()

    writer.observe(initialize_exchange[0])
    assert writer.count == 0


def test_fanout_delivers_in_order(initialize_exchange):
    """Test every observer sees every message in order."""
    first, second = CaptureCollector(), CaptureCollector()
    fanout = FanoutObserver([first, second, DiagnosticObserver()])

    for message in initialize_exchange:
        fanout.observe(message)

    assert first.messages == initialize_exchange
    assert second.messages == initialize_exchange
    assert len(first) == 3


def test_observers_satisfy_protocol(tmp_path):
    """Test the sinks are MessageObservers."""
    writer = CaptureWriter(tmp_path / "capture.jsonl")
    try:
        for observer in (writer, CaptureCollector(), FanoutObserver([]), DiagnosticObserver()):
            assert isinstance(observer, MessageObserver)
    finally:
        writer.close()


def test_describe_message(initialize_exchange, annotated):
    """Test diagnostic labels."""
    error = annotated({"jsonrpc": "2.0", "id": 1, "error": {"code": -1, "message": "x"}})

    assert [describe_message(m) for m in initialize_exchange] == [
        "initialize",
        "response",
        "notifications/initialized",
    ]
    assert describe_message(error) == "error"


def test_format_description():
    """Test description lines become comment lines."""
    assert format_description("a\nb") == ["// a", "// b"]
