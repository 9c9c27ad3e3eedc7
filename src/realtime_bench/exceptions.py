"""Custom exception hierarchy for realtime-bench.

All realtime-bench exceptions inherit from BenchError, allowing callers
to catch broad or specific errors:

    try:
        await backend.write("client-0", {"value": "init"})
    except WriteError as e:
        print(f"Upsert rejected: {e}")
    except BenchError as e:
        print(f"realtime-bench error: {e}")
"""

from __future__ import annotations


class BenchError(Exception):
    """Base exception for all realtime-bench errors."""


class BackendError(BenchError):
    """Raised when the backend cannot be reached or misbehaves."""


class WriteError(BackendError):
    """Raised when an upsert is rejected or fails in transit."""


class SubscribeError(BackendError):
    """Raised when a change-notification subscription cannot be set up."""


class ConfigError(BenchError):
    """Raised when configuration is invalid or missing."""
