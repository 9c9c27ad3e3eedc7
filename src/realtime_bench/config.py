"""Configuration loading and validation."""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from .exceptions import ConfigError

DEFAULT_CONFIG_PATH = "~/.realtime-bench/config.yaml"
DEFAULT_CLIENT_COUNT = 1000


class BackendConfig(BaseModel):
    type: str = "supabase"  # "supabase" | "memory"
    url: str = ""
    api_key: str = ""
    schema_name: str = "public"
    table: str = "bench"
    request_timeout: float = 15.0
    heartbeat_interval: float = 25.0  # Realtime socket keepalive
    # Simulated backend only
    echo_delay: float = 0.05
    drop_rate: float = 0.0
    fail_rate: float = 0.0

    @property
    def topic(self) -> str:
        return f"{self.schema_name}:{self.table}"


class RunConfig(BaseModel):
    client_count: int = DEFAULT_CLIENT_COUNT
    write_interval: float = 10.0
    report_interval: float = 15.0
    report_every_batches: int = 5  # Volume-triggered summary every N full batches
    per_client_connections: bool = False
    duration: float = 0.0  # 0 = run until terminated
    max_samples: int = 0  # 0 = keep every sample


class BenchConfig(BaseModel):
    backend: BackendConfig = Field(default_factory=BackendConfig)
    run: RunConfig = Field(default_factory=RunConfig)


def parse_client_count(raw: str | int | None) -> int:
    """Client count from user input; falls back to the default when unusable."""
    if raw is None:
        return DEFAULT_CLIENT_COUNT
    try:
        count = int(str(raw).strip())
    except ValueError:
        return DEFAULT_CLIENT_COUNT
    return count if count > 0 else DEFAULT_CLIENT_COUNT


def _interpolate_env_vars(text: str) -> str:
    """Replace ${VAR_NAME} with environment variable values."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, "")

    return re.sub(r"\$\{(\w+)\}", replacer, text)


def _env_seconds(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number of seconds, got '{raw}'") from e


def _config_from_env() -> BenchConfig:
    """Build config from environment variables (for CI/container runs).

    Falls back to sane defaults when env vars are not set.
    """
    return BenchConfig(
        backend=BackendConfig(
            type=os.environ.get("BENCH_BACKEND", "supabase"),
            url=os.environ.get("BENCH_URL", ""),
            api_key=os.environ.get("BENCH_API_KEY", ""),
            schema_name=os.environ.get("BENCH_SCHEMA", "public"),
            table=os.environ.get("BENCH_TABLE", "bench"),
        ),
        run=RunConfig(
            client_count=parse_client_count(os.environ.get("BENCH_CLIENT_COUNT")),
            write_interval=_env_seconds("BENCH_WRITE_INTERVAL", 10.0),
            report_interval=_env_seconds("BENCH_REPORT_INTERVAL", 15.0),
        ),
    )


def load_config(path: str | Path | None = None) -> BenchConfig:
    """Load config from YAML file, env vars, or defaults.

    Priority: config.yaml (with ${ENV} interpolation) > env vars > defaults.
    """
    if path is None:
        path = Path(DEFAULT_CONFIG_PATH).expanduser()
    else:
        path = Path(path).expanduser()

    if not path.exists():
        return _config_from_env()

    raw_text = path.read_text()
    interpolated = _interpolate_env_vars(raw_text)
    data = yaml.safe_load(interpolated)
    if data is None:
        return BenchConfig()
    return BenchConfig(**data)


def save_config(config: BenchConfig, path: str | Path | None = None) -> Path:
    """Save config to YAML file."""
    if path is None:
        path = Path(DEFAULT_CONFIG_PATH).expanduser()
    else:
        path = Path(path).expanduser()

    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump()
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return path
