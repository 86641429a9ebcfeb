from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Configuration for the Redis correlation store."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = "nebula-hitl"


class StoreConfig(BaseModel):
    """Correlation store settings."""

    backend: Literal["inmemory", "sqlite", "redis"] = "inmemory"
    sqlite_path: str = "nebula_hitl.db"
    redis: RedisConfig = Field(default_factory=RedisConfig)


class HitlConfig(BaseModel):
    """Top-level configuration model."""

    public_base_url: str = "http://localhost:5678"
    waiting_path_prefix: str = "webhook-waiting"
    webhook_path: str = "nebula-hitl-response"
    indefinite_wait_days: int = Field(default=365, ge=1, le=365)
    dispatch_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    store: StoreConfig = Field(default_factory=StoreConfig)


def load_config(path: Optional[str] = None) -> HitlConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to NEBULA_HITL_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("NEBULA_HITL_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = HitlConfig(**data)
    else:
        config = HitlConfig()

    env_backend = os.getenv("NEBULA_HITL_STORE")
    if env_backend:
        config.store.backend = env_backend.lower()
    env_public_url = os.getenv("NEBULA_HITL_PUBLIC_URL")
    if env_public_url:
        config.public_base_url = env_public_url
    return config
