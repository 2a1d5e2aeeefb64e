# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Configuration management for loomgraph.

Values resolve in this order (highest first):
    1. Keys from an optional YAML file passed to load_settings()
    2. LOOMGRAPH_* environment variables (and .env unless LOOMGRAPH_SKIP_ENV_FILE is set)
    3. Field defaults
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Global data directory for file-based checkpoint backends
GLOBAL_LOOMGRAPH_DIR = Path.home() / ".loomgraph"


class CheckpointBackend(str, Enum):
    """Available checkpoint storage backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    JSON = "json"


class CheckpointErrorPolicy(str, Enum):
    """What a checkpoint write site does when the backend fails.

    WARN: log a warning and keep executing
    RAISE: surface CheckpointBackendError and stop
    """

    WARN = "warn"
    RAISE = "raise"


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="LOOMGRAPH_",
        env_file=".env" if not os.getenv("LOOMGRAPH_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Graph execution
    default_max_steps: int = Field(100, gt=0, description="Step bound for CompiledGraph.invoke/stream")
    agent_max_steps: int = Field(10, gt=0, description="Loop bound for the resumable runner")

    # Parallel execution (None = unbounded)
    parallel_max_concurrency: Optional[int] = Field(None, gt=0)

    # Checkpointing
    checkpoint_backend: CheckpointBackend = CheckpointBackend.MEMORY
    checkpoint_max_items: int = Field(100, gt=0)
    checkpoint_db_path: str = str(GLOBAL_LOOMGRAPH_DIR / "checkpoints.db")
    checkpoint_table_name: str = "loomgraph_checkpoints"
    checkpoint_dir: str = str(GLOBAL_LOOMGRAPH_DIR / "checkpoints")
    checkpoint_error_policy: CheckpointErrorPolicy = CheckpointErrorPolicy.WARN

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Accept standard level names plus TRACE."""
        allowed = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}, got {v!r}")
        return v.upper()

    @field_validator("checkpoint_table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Table names are interpolated into SQL, so keep them to identifiers."""
        if not v.replace("_", "").isalnum():
            raise ValueError(f"checkpoint_table_name must be alphanumeric/underscore, got {v!r}")
        return v


def _read_yaml_config(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Load a YAML mapping of settings overrides."""
    path = Path(os.path.expanduser(str(config_file)))
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def load_settings(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """Load application settings.

    Args:
        config_file: Optional YAML file whose keys override env and defaults

    Returns:
        Settings instance
    """
    if config_file is None:
        return Settings()
    return Settings(**_read_yaml_config(config_file))


__all__ = [
    "CheckpointBackend",
    "CheckpointErrorPolicy",
    "GLOBAL_LOOMGRAPH_DIR",
    "Settings",
    "load_settings",
]
