"""Streamable HTTP interceptor: the SSE proxy plus session tracking and HTTP metadata."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import httpx
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from ..errors import ForwardingError
from ..models import HttpInteraction, StreamableHttpMetadata, Transport
from ..shared.logger import log_debug, log_error, log_info
from .sse import SSEInterceptor, forward_headers

SESSION_HEADER = "mcp-session-id"

# Headers copied into streamable_http_metadata for each recorded message
RECORDED_HEADERS = (
    "mcp-session-id",
    "mcp-protocol-version",
    "content-type",
    "accept",
)

INTERNAL_ERROR = -32603


def extract_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Pick the protocol-relevant headers present on a request or response."""
    result = {}
    for name in RECORDED_HEADERS:
        value = headers.get(name)
        if value:
            result[name] = value
    return result


class StreamableHTTPInterceptor(SSEInterceptor):
    """Proxy for the session-oriented streamable HTTP transport.

    Behaves like :class:`SSEInterceptor` and additionally:

    * tracks ``mcp-session-id`` values seen on requests and responses, mapped
      to the interaction that established them (``POST`` or ``SSE``);
    * forwards ``DELETE`` to end a session and forgets it locally;
    * attaches :class:`StreamableHttpMetadata` to every recorded message.

    Client to server messages carry the request headers; server to client
    messages carry the response headers for POST and the request headers for
    the standalone GET stream.
    """

    transport = Transport.STREAMABLE_HTTP
    component = "streamable_http_interceptor"

    def __init__(self, target_url: str, listen_port: Optional[int], **kwargs):
        super().__init__(target_url, listen_port, **kwargs)
        self._sessions: Dict[str, str] = {}
        self._sessions_lock = asyncio.Lock()

    def routes(self) -> list:
        return super().routes() + [
            Route("/{path:path}", self.handle_delete, methods=["DELETE"]),
        ]

    def proxy_error_response(self) -> Response:
        return JSONResponse(
            {
                "jsonrpc": "2.0",
                "error": {"code": INTERNAL_ERROR, "message": "Internal proxy error"},
                "id": None,
            },
            status_code=500,
        )

    def record_http(
        self,
        message: Dict[str, Any],
        sender: str,
        recipient: str,
        interaction: HttpInteraction,
        headers: Mapping[str, str],
    ) -> None:
        metadata = StreamableHttpMetadata(method=interaction, headers=extract_headers(headers))
        self._record(message, sender, recipient, http_metadata=metadata)

    async def track_session(self, session_id: Optional[str], kind: str) -> None:
        if not session_id:
            return
        async with self._sessions_lock:
            if session_id not in self._sessions:
                log_debug("Tracking session", component=self.component, session_id=session_id, kind=kind)
            self._sessions[session_id] = kind

    async def forget_session(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        async with self._sessions_lock:
            if self._sessions.pop(session_id, None) is not None:
                log_debug("Session ended", component=self.component, session_id=session_id)

    def active_sessions(self) -> List[str]:
        """Session ids currently tracked, in first-seen order."""
        return list(self._sessions)

    async def on_post(self, request: Request, response: Optional[httpx.Response]) -> None:
        await self.track_session(request.headers.get(SESSION_HEADER), "POST")
        if response is not None:
            await self.track_session(response.headers.get(SESSION_HEADER), "POST")

    async def on_get(self, request: Request) -> None:
        await self.track_session(request.headers.get(SESSION_HEADER), "SSE")

    async def handle_delete(self, request: Request) -> Response:
        session_id = request.headers.get(SESSION_HEADER)
        await self.forget_session(session_id)

        target = self.target_for(request)
        try:
            upstream = await self.open_upstream("DELETE", target, headers=forward_headers(request.headers))
            await self.read_upstream(upstream)
        except ForwardingError as e:
            log_error("Error forwarding DELETE request", component=self.component, error=e, target=target)
            return self.proxy_error_response()

        log_info(
            f"Session delete forwarded: {upstream.status_code}",
            component=self.component,
            session_id=session_id,
        )
        return Response(status_code=upstream.status_code)

    async def close(self) -> None:
        await super().close()
        async with self._sessions_lock:
            self._sessions.clear()
