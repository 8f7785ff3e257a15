from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_EVENT_PUBLISH_TIMEOUT,
    DEFAULT_EXECUTION_TIMEOUT_MS,
    DEFAULT_MAX_CONCURRENT_EXECUTIONS,
    DEFAULT_MAX_LOOP_ITERATIONS,
)


class RedisConfig(BaseModel):
    """Configuration for the Redis event sink."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key: str = "stepgraph:events"


class EventsConfig(BaseModel):
    """Event sink configuration settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Execution engine limits and defaults.

    ``default_timeout`` is in milliseconds, ``event_publish_timeout`` in
    seconds.
    """

    max_concurrent_executions: int = Field(
        default=DEFAULT_MAX_CONCURRENT_EXECUTIONS, ge=1
    )
    default_timeout: Optional[float] = DEFAULT_EXECUTION_TIMEOUT_MS
    enable_checkpoints: bool = True
    max_loop_iterations: int = Field(default=DEFAULT_MAX_LOOP_ITERATIONS, ge=1)
    event_publish_timeout: float = DEFAULT_EVENT_PUBLISH_TIMEOUT


class StepgraphConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    events: EventsConfig = EventsConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StepgraphConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPGRAPH_CONFIG env
            variable or 'stepgraph.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPGRAPH_CONFIG", "stepgraph.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepgraphConfig(**data)
    else:
        config = StepgraphConfig()

    env_db_url = os.getenv("STEPGRAPH_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("STEPGRAPH_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
