"""
Common utilities for the tea-ordering CLI.

Modules:
- chagee: ordering API client (httpx)
- regions / region_store: region profiles and custom profile loading
- config: environment configuration and storage paths
- logging_config: structlog setup
- parser / format: command tokenizing and terminal formatting
"""

__all__ = [
    "chagee",
    "config",
    "format",
    "logging_config",
    "parser",
    "region_store",
    "regions",
]
