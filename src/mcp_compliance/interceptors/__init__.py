"""Man-in-the-middle interceptors, one per transport."""

from typing import Optional

from ..capture import MessageObserver
from ..errors import ConfigurationError
from ..models import InterceptorConfig, Transport
from .base import BaseInterceptor
from .server import InterceptorServer
from .sse import SSEInterceptor
from .stdio import StdioInterceptor
from .streamable_http import StreamableHTTPInterceptor

__all__ = [
    "BaseInterceptor",
    "InterceptorServer",
    "SSEInterceptor",
    "StdioInterceptor",
    "StreamableHTTPInterceptor",
    "create_interceptor",
]


def create_interceptor(config: InterceptorConfig, observer: Optional[MessageObserver] = None) -> BaseInterceptor:
    """Build the interceptor for ``config.transport``; configuration errors surface before any I/O."""
    config.validate_for_start()

    if config.transport == Transport.STDIO:
        return StdioInterceptor(
            config.command,
            config.args,
            client_id=config.client_id,
            server_id=config.server_id,
            observer=observer,
        )

    if config.transport == Transport.SSE:
        interceptor_class = SSEInterceptor
    elif config.transport == Transport.STREAMABLE_HTTP:
        interceptor_class = StreamableHTTPInterceptor
    else:
        raise ConfigurationError(f"Unsupported transport: {config.transport}")

    return interceptor_class(
        config.target_url,
        config.listen_port,
        client_id=config.client_id,
        server_id=config.server_id,
        listen_host=config.listen_host,
        observer=observer,
    )
