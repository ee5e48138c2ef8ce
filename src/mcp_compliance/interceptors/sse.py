"""SSE interceptor: an HTTP proxy that records JSON-RPC over POST and event streams."""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import urljoin

import httpx
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from ..capture import MessageObserver
from ..codec import EventStreamDecoder, decode_body
from ..errors import ConfigurationError, ForwardingError
from ..models import HttpInteraction, Transport
from ..shared.config import Config
from ..shared.logger import log_debug, log_error, log_info
from .base import BaseInterceptor
from .server import InterceptorServer

# Request headers relayed to the target; everything else is dropped
FORWARDED_REQUEST_HEADERS = (
    "mcp-session-id",
    "mcp-protocol-version",
    "accept",
    "authorization",
)

# Target response headers relayed back to the caller
RELAYED_RESPONSE_HEADERS = (
    "content-type",
    "mcp-session-id",
    "mcp-protocol-version",
)

EVENT_STREAM = "text/event-stream"


def forward_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Select the protocol-relevant request headers to send to the target."""
    result = {}
    for name in FORWARDED_REQUEST_HEADERS:
        value = headers.get(name)
        if value:
            result[name] = value
    return result


def is_event_stream(response: httpx.Response) -> bool:
    return response.headers.get("content-type", "").lower().startswith(EVENT_STREAM)


class SSEInterceptor(BaseInterceptor):
    """Proxy between an HTTP+SSE client and server.

    POST bodies are recorded client to server and forwarded byte for byte;
    JSON responses are recorded server to client. GET requests open the
    target's event stream and relay it line by line, recording ``data:``
    lines as server to client messages.
    """

    transport = Transport.SSE
    component = "sse_interceptor"

    def __init__(
        self,
        target_url: str,
        listen_port: Optional[int],
        *,
        client_id: str,
        server_id: str,
        listen_host: Optional[str] = None,
        observer: Optional[MessageObserver] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if listen_port is None:
            raise ConfigurationError(f"A listen port is required for {self.transport.value} transport")
        if not target_url:
            raise ConfigurationError(f"A target URL is required for {self.transport.value} transport")
        super().__init__(client_id, server_id, observer)

        self.target_url = target_url
        self.listen_host = listen_host or Config.MITM_LISTEN_HOST
        self.server = InterceptorServer(self.app_factory(), self.listen_host, listen_port, component=self.component)

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            follow_redirects=False,
            timeout=httpx.Timeout(
                connect=Config.PROXY_CONNECT_TIMEOUT,
                read=Config.PROXY_REQUEST_TIMEOUT,
                write=10.0,
                pool=None,
            ),
        )
        self._closed = False

    @property
    def app(self) -> Starlette:
        return self.server.app

    @property
    def port(self) -> int:
        """The bound port (resolved after :meth:`start` when 0 was requested)."""
        return self.server.port

    def routes(self) -> list:
        return [
            Route("/{path:path}", self.handle_post, methods=["POST"]),
            Route("/{path:path}", self.handle_get, methods=["GET"]),
        ]

    def app_factory(self) -> Starlette:
        return Starlette(routes=self.routes())

    async def start(self) -> None:
        await self.server.start()
        log_info(f"Forwarding to {self.target_url}", component=self.component, port=self.port)

    async def close(self) -> None:
        """Release the listener and the forwarding client. Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self.server.stop()
        if self._owns_client:
            await self.client.aclose()

    def target_for(self, request: Request) -> str:
        url = urljoin(self.target_url, request.url.path)
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return url

    def relay_headers(self, response: httpx.Response) -> Dict[str, str]:
        headers = {}
        for name in RELAYED_RESPONSE_HEADERS:
            value = response.headers.get(name)
            if value:
                headers[name] = value
        return headers

    def proxy_error_response(self) -> Response:
        return JSONResponse({"error": "Proxy error"}, status_code=500)

    def record_http(
        self,
        message: Dict[str, Any],
        sender: str,
        recipient: str,
        interaction: HttpInteraction,
        headers: Mapping[str, str],
    ) -> None:
        """Record a message seen on an HTTP exchange; plain SSE keeps no HTTP metadata."""
        self._record(message, sender, recipient)

    # Hooks for session bookkeeping
    async def on_post(self, request: Request, response: Optional[httpx.Response]) -> None:
        pass

    async def on_get(self, request: Request) -> None:
        pass

    async def open_upstream(self, method: str, target: str, **kwargs) -> httpx.Response:
        """Send a request to the target and return the unread, streaming response."""
        try:
            return await self.client.send(
                self.client.build_request(method, target, **kwargs),
                stream=True,
            )
        except httpx.HTTPError as e:
            raise ForwardingError(f"{method} {target} failed: {e!r}", target_url=target) from e

    async def read_upstream(self, upstream: httpx.Response) -> bytes:
        try:
            return await upstream.aread()
        except httpx.HTTPError as e:
            raise ForwardingError(f"Reading response failed: {e!r}", target_url=str(upstream.url)) from e
        finally:
            await upstream.aclose()

    async def handle_post(self, request: Request) -> Response:
        body = await request.body()
        for message in decode_body(body):
            self.record_http(message, self.client_id, self.server_id, HttpInteraction.POST, request.headers)

        target = self.target_for(request)
        headers = {"content-type": "application/json", **forward_headers(request.headers)}
        try:
            upstream = await self.open_upstream("POST", target, content=body, headers=headers)
            await self.on_post(request, upstream)

            if is_event_stream(upstream):
                return self.stream_response(upstream, HttpInteraction.POST_SSE, upstream.headers)

            content = await self.read_upstream(upstream)
        except ForwardingError as e:
            log_error("Error forwarding POST request", component=self.component, error=e, target=target)
            return self.proxy_error_response()

        for message in decode_body(content):
            self.record_http(message, self.server_id, self.client_id, HttpInteraction.POST, upstream.headers)

        log_debug(f"POST {target} -> {upstream.status_code}", component=self.component)
        return Response(content=content, status_code=upstream.status_code, headers=self.relay_headers(upstream))

    async def handle_get(self, request: Request) -> Response:
        target = self.target_for(request)
        await self.on_get(request)
        try:
            upstream = await self.open_upstream(
                "GET",
                target,
                headers=forward_headers(request.headers),
                # event streams stay open indefinitely between events
                timeout=httpx.Timeout(Config.PROXY_CONNECT_TIMEOUT, read=None),
            )
        except ForwardingError as e:
            log_error("Error forwarding SSE stream", component=self.component, error=e, target=target)
            return Response(status_code=500)

        log_info(f"Event stream opened: {upstream.status_code}", component=self.component, target=target)
        return self.stream_response(upstream, HttpInteraction.GET_SSE, request.headers)

    def stream_response(
        self,
        upstream: httpx.Response,
        interaction: HttpInteraction,
        metadata_headers: Mapping[str, str],
    ) -> StreamingResponse:
        """Relay an upstream event stream line by line while recording ``data:`` lines."""
        decoder = EventStreamDecoder()

        async def relay():
            try:
                async for chunk in upstream.aiter_bytes():
                    for line, message in decoder.feed(chunk):
                        if message is not None:
                            self.record_http(message, self.server_id, self.client_id, interaction, metadata_headers)
                        yield line + b"\n"

                tail = decoder.close()
                if tail is not None:
                    line, message = tail
                    if message is not None:
                        self.record_http(message, self.server_id, self.client_id, interaction, metadata_headers)
                    yield line
            except httpx.HTTPError as e:
                log_error("Event stream relay failed", component=self.component, error=e)
            finally:
                log_debug("Event stream ended", component=self.component, interaction=interaction.value)

        headers = self.relay_headers(upstream)
        headers.setdefault("content-type", EVENT_STREAM)
        headers["cache-control"] = "no-cache"
        return StreamingResponse(
            relay(),
            status_code=upstream.status_code,
            headers=headers,
            background=BackgroundTask(upstream.aclose),
        )
