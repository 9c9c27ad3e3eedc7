"""Backend factory — builds backend connections from configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import BackendConfig
from ..exceptions import ConfigError
from .base import BenchBackend
from .memory import InMemoryBackend, SimulatedTable
from .supabase import SupabaseBackend

logger = logging.getLogger("realtime-bench")

BackendFactory = Callable[[], BenchBackend]


def create_backend_factory(config: BackendConfig) -> BackendFactory:
    """Return a callable producing one new backend connection per call.

    Every connection from the same factory targets the same table, so
    per-client connections observe each other's writes. For the simulated
    backend that means sharing one SimulatedTable.
    """
    backend_type = config.type.lower()

    if backend_type == "supabase":
        if not config.url or not config.api_key:
            raise ConfigError("Supabase backend needs both a URL and an API key")

        def make_supabase() -> BenchBackend:
            return SupabaseBackend(
                url=config.url,
                api_key=config.api_key,
                schema_name=config.schema_name,
                table=config.table,
                request_timeout=config.request_timeout,
                heartbeat_interval=config.heartbeat_interval,
            )

        return make_supabase

    if backend_type == "memory":
        table = SimulatedTable(schema_name=config.schema_name, table=config.table)
        logger.info(
            f"Using simulated backend (echo {config.echo_delay * 1000:.0f}ms, "
            f"drop {config.drop_rate:.0%}, fail {config.fail_rate:.0%})"
        )

        def make_memory() -> BenchBackend:
            return InMemoryBackend(
                table,
                echo_delay=config.echo_delay,
                drop_rate=config.drop_rate,
                fail_rate=config.fail_rate,
            )

        return make_memory

    raise ConfigError(
        f"Unknown backend type: {config.type!r}. Supported: supabase, memory"
    )
