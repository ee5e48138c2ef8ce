"""Centralized configuration management for the MCP compliance harness."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Config:
    """Configuration class with all environment variables."""

    # Interceptor Configuration
    MITM_LISTEN_HOST: str = os.getenv('MITM_LISTEN_HOST', '127.0.0.1')
    MITM_CLIENT_ID: str = os.getenv('MITM_CLIENT_ID', 'client')
    MITM_SERVER_ID: str = os.getenv('MITM_SERVER_ID', 'server')

    # Forwarding timeouts (seconds)
    PROXY_CONNECT_TIMEOUT: float = float(os.getenv('PROXY_CONNECT_TIMEOUT', '10'))
    PROXY_REQUEST_TIMEOUT: float = float(os.getenv('PROXY_REQUEST_TIMEOUT', '60'))

    # Process and listener lifecycle
    SHUTDOWN_GRACE_SECONDS: float = float(os.getenv('SHUTDOWN_GRACE_SECONDS', '2'))
    SERVER_READY_TIMEOUT: float = float(os.getenv('SERVER_READY_TIMEOUT', '10'))

    # Scenario catalog and goldens
    SCENARIOS_PATH: str = os.getenv('SCENARIOS_PATH', 'scenarios/data.json')
    GOLDENS_DIR: str = os.getenv('GOLDENS_DIR', 'goldens')
    SDK_ROOT: Optional[str] = os.getenv('SDK_ROOT')

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO').upper()

    @classmethod
    def validate(cls) -> None:
        """Validate configuration values."""
        errors = []

        if not cls.MITM_LISTEN_HOST:
            errors.append("MITM_LISTEN_HOST is required")

        if cls.PROXY_CONNECT_TIMEOUT <= 0:
            errors.append(f"PROXY_CONNECT_TIMEOUT must be positive, got {cls.PROXY_CONNECT_TIMEOUT}")

        if cls.PROXY_CONNECT_TIMEOUT > cls.PROXY_REQUEST_TIMEOUT:
            errors.append("PROXY_CONNECT_TIMEOUT must not exceed PROXY_REQUEST_TIMEOUT")

        if cls.SHUTDOWN_GRACE_SECONDS < 0:
            errors.append(f"SHUTDOWN_GRACE_SECONDS must not be negative, got {cls.SHUTDOWN_GRACE_SECONDS}")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")

    @classmethod
    def sdk_root(cls) -> Path:
        """Directory that holds the SDK folders (defaults to the working directory)."""
        return Path(cls.SDK_ROOT) if cls.SDK_ROOT else Path.cwd()


@lru_cache()
def get_config() -> Config:
    """Get validated configuration instance."""
    Config.validate()
    return Config()
