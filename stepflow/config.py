from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MAX_CONCURRENT_EXECUTIONS,
    DEFAULT_MAX_GRAPH_STEPS,
    DEFAULT_RETENTION_HOURS,
    DEFAULT_STEP_RETRY_INITIAL_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
)
from .contracts import RetryPolicy


class PersistenceConfig(BaseModel):
    """Execution history settings."""

    enabled: bool = False
    storage: Literal["memory"] = "memory"
    retention: float = Field(default=DEFAULT_RETENTION_HOURS, gt=0)  # hours


class EngineConfig(BaseModel):
    """Top-level engine configuration. Durations are milliseconds."""

    enable_logging: bool = True
    enable_metrics: bool = True
    default_timeout: float = Field(default=DEFAULT_TIMEOUT_MS, gt=0)
    max_concurrent_executions: int = Field(default=DEFAULT_MAX_CONCURRENT_EXECUTIONS, ge=1)
    max_graph_steps: int = Field(default=DEFAULT_MAX_GRAPH_STEPS, ge=1)
    step_retry: RetryPolicy = RetryPolicy(initial_delay=DEFAULT_STEP_RETRY_INITIAL_DELAY_MS)
    persistence: PersistenceConfig = PersistenceConfig()


def load_config(path: Optional[str] = None) -> EngineConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'stepflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "stepflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = EngineConfig(**data)
    else:
        config = EngineConfig()

    env_timeout = os.getenv("STEPFLOW_DEFAULT_TIMEOUT")
    if env_timeout:
        config.default_timeout = float(env_timeout)
    env_ceiling = os.getenv("STEPFLOW_MAX_CONCURRENT_EXECUTIONS")
    if env_ceiling:
        config.max_concurrent_executions = int(env_ceiling)
    return config
