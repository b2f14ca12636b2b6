
"""
Common utilities for tera-file-sync.

Modules:
- retry: bounded retry with exponential backoff for remote calls
- tera_api: async client for the TERA IO project-file API
- environment: interfaces of the host's `tera` environment
"""

__all__ = [
    "retry",
    "tera_api",
    "environment",
]
