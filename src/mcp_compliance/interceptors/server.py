"""Hypercorn listener owned by a single HTTP interceptor.

The listening socket is bound before hypercorn starts so that bind failures
surface from :meth:`InterceptorServer.start`, port 0 resolves to a concrete
port, and connections arriving before the serve task runs wait in the backlog.
"""

import asyncio
import socket
from typing import Optional

from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from ..shared.config import Config
from ..shared.logger import log_debug, log_info, log_warning

LISTEN_BACKLOG = 100


class InterceptorServer:
    """Serve an ASGI app on one host/port until :meth:`stop` is called."""

    def __init__(self, app, host: str, port: int, component: str = "interceptor_server"):
        self.app = app
        self.host = host
        self.port = port
        self.component = component
        self.server_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self.is_running = False

    def _bind_socket(self) -> socket.socket:
        family, type_, proto, _, address = socket.getaddrinfo(
            self.host, self.port, type=socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, type_, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(address)
            sock.listen(LISTEN_BACKLOG)
        except OSError:
            sock.close()
            raise
        return sock

    async def start(self) -> None:
        """Bind the socket and start serving in a background task."""
        if self.is_running:
            log_warning("Listener already running", component=self.component, port=self.port)
            return

        sock = self._bind_socket()
        self.port = sock.getsockname()[1]

        config = HypercornConfig()
        # hypercorn adopts the descriptor and closes it on shutdown
        config.bind = [f"fd://{sock.detach()}"]
        config.accesslog = None
        config.loglevel = "WARNING"
        config.graceful_timeout = Config.SHUTDOWN_GRACE_SECONDS
        config.backlog = LISTEN_BACKLOG

        self._shutdown_event = asyncio.Event()
        self.server_task = asyncio.create_task(
            serve(self.app, config, shutdown_trigger=self._shutdown_event.wait)
        )
        self.is_running = True

        # Give the serve task a chance to fail fast (e.g. lifespan errors)
        await asyncio.sleep(0)
        if self.server_task.done():
            self.is_running = False
            self.server_task.result()

        log_info(f"Listening on {self.host}:{self.port}", component=self.component)

    async def stop(self) -> None:
        """Stop accepting connections and release the socket. Idempotent."""
        if not self.is_running:
            return
        self.is_running = False

        self._shutdown_event.set()
        task = self.server_task
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=Config.SHUTDOWN_GRACE_SECONDS + 1)
        except asyncio.TimeoutError:
            log_debug("Listener did not drain in time, cancelling", component=self.component)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        log_info(f"Listener on {self.host}:{self.port} stopped", component=self.component)
