"""Correlation store backends for pending HITL requests."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HitlConfig, load_config
from .base import ClaimResult, ClaimStatus, CorrelationStore, RegisterStatus
from .inmemory import InMemoryCorrelationStore
from .sqlite import SQLiteCorrelationStore

_store_instance: CorrelationStore | None = None


def get_store(
    backend: Optional[str] = None, config: Optional[HitlConfig] = None
) -> CorrelationStore:
    """Factory function to obtain the process-wide correlation store.

    The backend is selected from ``backend``, the ``NEBULA_HITL_STORE``
    environment variable or loaded configuration, in that order. Once created
    the instance is reused unless a backend or config is passed explicitly.
    """

    global _store_instance
    if _store_instance is not None and backend is None and config is None:
        return _store_instance

    config = config or load_config()
    backend = (
        backend or os.getenv("NEBULA_HITL_STORE") or config.store.backend
    ).lower()

    if backend == "inmemory":
        _store_instance = InMemoryCorrelationStore()
    elif backend == "sqlite":
        _store_instance = SQLiteCorrelationStore(config.store.sqlite_path)
    elif backend == "redis":
        from .redis import RedisCorrelationStore

        redis_conf = config.store.redis
        _store_instance = RedisCorrelationStore(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            key_prefix=redis_conf.key_prefix,
        )
    else:
        raise ValueError(f"Unsupported store backend: {backend}")

    return _store_instance


__all__ = [
    "ClaimResult",
    "ClaimStatus",
    "CorrelationStore",
    "InMemoryCorrelationStore",
    "RegisterStatus",
    "SQLiteCorrelationStore",
    "get_store",
]
