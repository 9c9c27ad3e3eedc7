"""realtime-bench — round-trip latency harness for realtime change feeds."""

__version__ = "0.3.0"

from .exceptions import (
    BackendError,
    BenchError,
    ConfigError,
    SubscribeError,
    WriteError,
)

__all__ = [
    "__version__",
    "BenchError",
    "BackendError",
    "WriteError",
    "SubscribeError",
    "ConfigError",
]
