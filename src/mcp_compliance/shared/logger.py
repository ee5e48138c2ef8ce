"""Global logger helpers for the operator diagnostic channel.

Usage:
    from mcp_compliance.shared.logger import log_info, log_error, log_debug

    log_info("Interceptor listening", component="sse_interceptor", port=8080)
    log_error("Forwarding failed", component="sse_interceptor", error=exc)

Structured keyword arguments are appended to the message as ``key=value``
pairs. Nothing here writes to stdout.
"""

import logging
from typing import Any, Dict, Optional

from .python_logger_config import ROOT_LOGGER_NAME, TRACE


def get_logger(component: Optional[str] = None) -> logging.Logger:
    """Get the harness logger, or a child logger for a component."""
    if component:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
    return logging.getLogger(ROOT_LOGGER_NAME)


def _render(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    extras = " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)
    return f"{message} {extras}" if extras else message


def log_trace(message: str, component: Optional[str] = None, **kwargs):
    """Trace log (very verbose debugging)."""
    logger = get_logger(component)
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, _render(message, kwargs))


def log_debug(message: str, component: Optional[str] = None, **kwargs):
    """Debug log.

    Args:
        message: Log message
        component: Optional component name
        **kwargs: Additional structured data
    """
    logger = get_logger(component)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_render(message, kwargs))


def log_info(message: str, component: Optional[str] = None, **kwargs):
    """Info log.

    Args:
        message: Log message
        component: Optional component name
        **kwargs: Additional structured data
    """
    get_logger(component).info(_render(message, kwargs))


def log_warning(message: str, component: Optional[str] = None, **kwargs):
    """Warning log.

    Args:
        message: Log message
        component: Optional component name
        **kwargs: Additional structured data
    """
    get_logger(component).warning(_render(message, kwargs))


def log_error(message: str, component: Optional[str] = None, error: Optional[BaseException] = None, **kwargs):
    """Error log.

    Args:
        message: Log message
        component: Optional component name
        error: Optional exception to log
        **kwargs: Additional structured data
    """
    if error:
        kwargs['error'] = str(error) or repr(error)
        kwargs['error_type'] = type(error).__name__

    get_logger(component).error(_render(message, kwargs))
