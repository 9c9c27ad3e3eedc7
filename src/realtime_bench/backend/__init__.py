"""Backends: Supabase (PostgREST + Realtime) and an in-process simulator."""

from .base import BenchBackend
from .factory import BackendFactory, create_backend_factory
from .memory import InMemoryBackend
from .supabase import SupabaseBackend

__all__ = [
    "BenchBackend",
    "BackendFactory",
    "InMemoryBackend",
    "SupabaseBackend",
    "create_backend_factory",
]
