"""Python logging configuration for the compliance harness.

Diagnostics always go to stderr: for the stdio transport the process' stdout
is the protocol channel relayed to the client and must carry nothing else.

Environment Variables:
    LOG_LEVEL: Logging level (TRACE, DEBUG, INFO, WARNING, ERROR, CRITICAL)
    PYTHON_LOG_FORMAT: Log message format (default: see below)
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = 'mcp_compliance'

# Below DEBUG; per-message capture traces
TRACE = 5
logging.addLevelName(TRACE, 'TRACE')


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    # ANSI color codes
    COLORS = {
        'TRACE': '\033[90m',     # Dark gray
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        """Format the log record with colors if supported."""
        msg = super().format(record)

        if sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, '')
            if color:
                msg = f"{color}{msg}{self.RESET}"

        return msg


def resolve_level(log_level: str) -> int:
    """Convert a level name (including TRACE) to a logging constant."""
    log_level = log_level.upper()
    if log_level == 'TRACE':
        return TRACE
    return getattr(logging, log_level, logging.INFO)


def setup_python_logging(
    log_level: Optional[str] = None,
    use_colors: bool = True,
    log_format: Optional[str] = None
) -> logging.Logger:
    """Configure the harness logger with stderr output.

    Args:
        log_level: Logging level (if None, reads from env)
        use_colors: Whether to use colored output for TTY
        log_format: Custom log format (if None, uses default)

    Returns:
        Configured harness logger
    """
    if log_level is None:
        log_level = os.getenv('LOG_LEVEL', 'INFO')

    if log_format is None:
        log_format = os.getenv(
            'PYTHON_LOG_FORMAT',
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    level = resolve_level(log_level)

    harness_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in harness_logger.handlers[:]:
        harness_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)

    if use_colors and sys.stderr.isatty():
        formatter = ColoredFormatter(log_format)
    else:
        formatter = logging.Formatter(log_format)

    console_handler.setFormatter(formatter)

    harness_logger.setLevel(level)
    harness_logger.addHandler(console_handler)
    harness_logger.propagate = False

    harness_logger.debug(f"Python logging configured: level={log_level}, colors={use_colors and sys.stderr.isatty()}")

    return harness_logger


def silence_noisy_loggers():
    """Silence or reduce verbosity of noisy third-party loggers."""
    noisy_loggers = [
        'asyncio',
        'httpx',
        'httpcore',
        'hpack',
        'hypercorn.access',
        'hypercorn.error',
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
