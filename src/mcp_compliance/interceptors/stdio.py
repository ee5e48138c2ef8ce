"""Stdio interceptor: relay the process' own stdin/stdout through a child server."""

import asyncio
import os
import sys
from typing import BinaryIO, Dict, List, Optional, Sequence

from ..capture import MessageObserver
from ..codec import PipeDecoder
from ..errors import ConfigurationError
from ..models import Transport
from ..shared.config import Config
from ..shared.logger import log_debug, log_error, log_info, log_warning
from .base import BaseInterceptor

CHUNK_SIZE = 64 * 1024


class StdioInterceptor(BaseInterceptor):
    """Spawn the server command and sit between it and the client.

    Client input is relayed to the child's stdin, the child's stdout to the
    client output; both byte streams pass through unmodified while newline
    framed JSON-RPC messages are recorded. The child's stderr is inherited.
    """

    transport = Transport.STDIO
    component = "stdio_interceptor"

    def __init__(
        self,
        command: str,
        args: Optional[Sequence[str]] = None,
        *,
        client_id: str,
        server_id: str,
        observer: Optional[MessageObserver] = None,
        env: Optional[Dict[str, str]] = None,
        client_input: Optional[asyncio.StreamReader] = None,
        client_output: Optional[BinaryIO] = None,
        grace_period: Optional[float] = None,
    ):
        if not command:
            raise ConfigurationError("A server command is required for stdio transport")
        super().__init__(client_id, server_id, observer)
        self.command = command
        self.args = list(args or [])
        self.env = env
        self.client_input = client_input
        self.client_output = client_output
        self.grace_period = Config.SHUTDOWN_GRACE_SECONDS if grace_period is None else grace_period

        self.process: Optional[asyncio.subprocess.Process] = None
        self._tasks: List[asyncio.Task] = []
        self._server_relay: Optional[asyncio.Task] = None
        self._input_transport: Optional[asyncio.BaseTransport] = None
        self._closed = False

    async def start(self) -> None:
        if self.process is not None:
            log_warning("Interceptor already started", component=self.component)
            return

        env = {**os.environ, **self.env} if self.env is not None else None
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                env=env,
            )
        except OSError as e:
            log_error(f"Failed to spawn server: {self.command}", component=self.component, error=e)
            raise

        log_info(
            f"Spawned server process {self.command}",
            component=self.component,
            pid=self.process.pid,
        )

        reader = self.client_input or await self._open_client_input()
        if self.client_output is None:
            self.client_output = sys.stdout.buffer

        self._server_relay = asyncio.create_task(self._relay_server_to_client())
        self._tasks = [
            asyncio.create_task(self._relay_client_to_server(reader)),
            self._server_relay,
        ]

    async def _open_client_input(self) -> asyncio.StreamReader:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        try:
            self._input_transport, _ = await loop.connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), sys.stdin.buffer
            )
        except ValueError:
            # Regular files cannot be polled; they are finite, read them whole.
            reader.feed_data(await asyncio.to_thread(sys.stdin.buffer.read))
            reader.feed_eof()
        return reader

    async def _relay_client_to_server(self, reader: asyncio.StreamReader) -> None:
        decoder = PipeDecoder()
        stdin = self.process.stdin
        try:
            while True:
                chunk = await reader.read(CHUNK_SIZE)
                if not chunk:
                    break
                for message in decoder.feed(chunk):
                    self._record(message, self.client_id, self.server_id)
                stdin.write(chunk)
                await stdin.drain()

            for message in decoder.close():
                self._record(message, self.client_id, self.server_id)
            log_debug("Client input closed", component=self.component)
        except (BrokenPipeError, ConnectionResetError) as e:
            log_warning("Server stdin closed while relaying", component=self.component, error=e)
        finally:
            if not stdin.is_closing():
                stdin.close()

    async def _relay_server_to_client(self) -> None:
        decoder = PipeDecoder()
        stdout = self.process.stdout
        output = self.client_output
        try:
            while True:
                chunk = await stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                for message in decoder.feed(chunk):
                    self._record(message, self.server_id, self.client_id)
                output.write(chunk)
                output.flush()

            for message in decoder.close():
                self._record(message, self.server_id, self.client_id)
            log_debug("Server output closed", component=self.component)
        except (BrokenPipeError, ConnectionResetError) as e:
            log_warning("Client output closed while relaying", component=self.component, error=e)

    async def wait(self) -> int:
        """Wait for the child to exit and its output to drain; return the exit code."""
        if self.process is None:
            raise RuntimeError("Interceptor has not been started")
        returncode = await self.process.wait()
        if self._server_relay is not None:
            await self._server_relay
        log_info(f"Server process exited with code {returncode}", component=self.component)
        return returncode

    async def close(self) -> None:
        """Terminate the child if it is still running. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        process = self.process
        if process is not None and process.returncode is None:
            try:
                process.terminate()
                await asyncio.wait_for(process.wait(), timeout=self.grace_period)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                log_warning("Server ignored SIGTERM, killing", component=self.component, pid=process.pid)
                process.kill()
                await process.wait()

        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except (BrokenPipeError, ConnectionResetError):
                pass

        if self._input_transport is not None:
            self._input_transport.close()
            self._input_transport = None
