"""Engine configuration loaded from environment variables."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_STORE_DIR = os.path.join(os.path.expanduser("~"), ".replaykit")


class EngineSettings(BaseSettings):
    """Tunables for the replay engine and the recorder."""

    model_config = SettingsConfigDict(
        env_prefix="REPLAYKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Replay limits
    max_foreach_concurrency: int = Field(16, ge=1, description="Upper bound on parallel foreach workers")
    max_iterations: int = Field(1000, ge=1, description="Traversal guard per flow graph")
    max_while_iterations: int = Field(10000, ge=1, description="Hard cap for while loops")
    default_wait_ms: int = Field(5000, ge=0)
    max_wait_ms: int = Field(120000, ge=0, description="Hard cap for any single wait")
    network_idle_sample_ms: int = Field(1200, ge=0)
    poll_interval_ms: int = Field(100, ge=10, description="Cooperative pause/cancel polling period")
    capture_failure_screenshots: bool = True

    # Recording stop barrier
    stop_barrier_top_timeout_ms: int = Field(5000, ge=0)
    stop_barrier_subframe_timeout_ms: int = Field(1500, ge=0)
    stop_barrier_grace_ms: int = Field(150, ge=0)

    # Triggers
    trigger_cooldown_ms: int = Field(0, ge=0, description="Minimum gap between fires of one trigger; 0 disables")

    # Persistence
    store_dir: str = Field(_DEFAULT_STORE_DIR, description="Directory for flows, runs and events")

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> EngineSettings:
    """Return the process-wide settings instance."""
    return EngineSettings()
