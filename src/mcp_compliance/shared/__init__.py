"""Shared utilities for the MCP compliance harness."""

from .config import Config, get_config

__all__ = ['Config', 'get_config']
