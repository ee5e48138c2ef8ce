"""Common interceptor contract: lifecycle plus message annotation."""

from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..capture import MessageObserver
from ..models import (
    AnnotatedMessage,
    JSONRPCMessage,
    MessageMetadata,
    StreamableHttpMetadata,
    Transport,
    utc_timestamp,
)
from ..shared.logger import log_warning


class BaseInterceptor:
    """Transparent relay between one client and one server endpoint.

    Subclasses implement :meth:`start` and :meth:`close`; both directions of
    traffic are decoded and every message is handed to the observer exactly
    once via :meth:`_record`.
    """

    transport: Transport
    component = "interceptor"

    def __init__(
        self,
        client_id: str,
        server_id: str,
        observer: Optional[MessageObserver] = None,
    ):
        self.client_id = client_id
        self.server_id = server_id
        self.observer = observer
        self.recorded = 0

    async def start(self) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _record(
        self,
        raw: Dict[str, Any],
        sender: str,
        recipient: str,
        http_metadata: Optional[StreamableHttpMetadata] = None,
    ) -> Optional[AnnotatedMessage]:
        """Annotate a decoded message and hand it to the observer."""
        try:
            message = JSONRPCMessage.model_validate(raw)
        except ValidationError as e:
            # Relayed untouched, but it cannot be represented in a capture.
            log_warning(
                "Dropping malformed JSON-RPC message from capture",
                component=self.component,
                sender=sender,
                recipient=recipient,
                error=e.errors()[0]["msg"] if e.errors() else str(e),
            )
            return None

        metadata: Dict[str, Any] = {
            "sender": sender,
            "recipient": recipient,
            "timestamp": utc_timestamp(),
            "transport": self.transport,
        }
        if http_metadata is not None:
            metadata["streamable_http_metadata"] = http_metadata

        annotated = AnnotatedMessage(message=message, metadata=MessageMetadata(**metadata))
        self.recorded += 1
        if self.observer is not None:
            self.observer.observe(annotated)
        return annotated
