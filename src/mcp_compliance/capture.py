"""Capture sinks: observers that receive every annotated message."""

from pathlib import Path
from typing import Iterable, List, Optional, Protocol, TextIO, Union, runtime_checkable

from .models import AnnotatedMessage
from .shared.logger import log_info, log_trace

COMMENT_PREFIX = "// "


@runtime_checkable
class MessageObserver(Protocol):
    """Receives each message once, at the moment it is decoded off the wire."""

    def observe(self, message: AnnotatedMessage) -> None:
        ...


def describe_message(message: AnnotatedMessage) -> str:
    """Short label for diagnostics: the method name, ``response`` or ``error``."""
    wire = message.message
    if wire.method is not None:
        return wire.method
    return "response" if wire.kind == "response" else "error"


def format_description(description: str) -> List[str]:
    """Render a scenario description as capture comment lines."""
    return [f"{COMMENT_PREFIX}{line}" for line in description.split("\n")]


def serialize_annotated(message: AnnotatedMessage) -> str:
    """One capture line for ``message``, without the trailing newline."""
    return message.to_json_line()


class CaptureWriter:
    """Append-only JSON-Lines capture file.

    Opening truncates the file. When a description is given it is written
    first as ``// `` comment lines. Each observed message becomes one line and
    is flushed immediately so a killed process still leaves a usable capture.
    """

    def __init__(self, path: Union[str, Path], description: Optional[str] = None):
        self.path = Path(path)
        self._stream: Optional[TextIO] = open(self.path, "w", encoding="utf-8")
        self.count = 0
        if description:
            for line in format_description(description):
                self._stream.write(line + "\n")
            self._stream.flush()

    def observe(self, message: AnnotatedMessage) -> None:
        if self._stream is None:
            return
        self._stream.write(serialize_annotated(message) + "\n")
        self._stream.flush()
        self.count += 1
        log_trace(
            f"[MITM] {message.metadata.sender} -> {message.metadata.recipient}: {describe_message(message)}",
            component="capture",
        )

    def close(self) -> None:
        if self._stream is None:
            return
        self._stream.close()
        self._stream = None
        log_info(f"Capture closed with {self.count} messages", component="capture", path=str(self.path))

    def __enter__(self) -> "CaptureWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class CaptureCollector:
    """In-memory observer, in arrival order."""

    def __init__(self):
        self.messages: List[AnnotatedMessage] = []

    def observe(self, message: AnnotatedMessage) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)


class FanoutObserver:
    """Deliver each message to several observers, in registration order."""

    def __init__(self, observers: Iterable[MessageObserver]):
        self.observers = list(observers)

    def observe(self, message: AnnotatedMessage) -> None:
        for observer in self.observers:
            observer.observe(message)


class DiagnosticObserver:
    """Mirror each message as a one-line summary on the diagnostic channel."""

    def observe(self, message: AnnotatedMessage) -> None:
        log_info(
            f"[MITM] {message.metadata.sender} -> {message.metadata.recipient}: {describe_message(message)}",
            component="mitm",
        )
