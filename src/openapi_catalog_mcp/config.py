"""Configuration management for the OpenAPI catalog server.

This module handles loading and validating the server's configuration:
where the source specifications live, where the catalog and dereferenced
documents are persisted, persistence retry behaviour and the in-memory
document cache limits.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field


class CacheConfig(BaseModel):
    """In-memory document cache configuration."""

    max_size: int = Field(
        default=500, ge=1, description="Maximum number of cached documents"
    )
    ttl: float = Field(
        default=60 * 60, gt=0, description="Entry time-to-live in seconds"
    )
    cleanup_interval: float = Field(
        default=5 * 60, gt=0, description="Seconds between background sweeps"
    )


class Config(BaseModel):
    """Main configuration class."""

    config_path: Optional[str] = Field(
        default=None, description="Path to the loaded config file"
    )
    base_path: str = Field(
        default=".", description="Directory containing the OpenAPI specifications"
    )
    catalog_dir: str = Field(
        default="_catalog", description="Catalog subdirectory under base_path"
    )
    dereferenced_dir: str = Field(
        default="_dereferenced",
        description="Dereferenced specs subdirectory under base_path",
    )
    retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for each persistence write"
    )
    retry_delay: float = Field(
        default=1.0, ge=0, description="Seconds to wait between write attempts"
    )
    allow_remote_refs: bool = Field(
        default=True, description="Fetch http(s) $ref targets while dereferencing"
    )
    cache: CacheConfig = Field(default_factory=CacheConfig)

    @property
    def catalog_path(self) -> Path:
        return Path(self.base_path) / self.catalog_dir

    @property
    def dereferenced_path(self) -> Path:
        return Path(self.base_path) / self.dereferenced_dir

    @classmethod
    def load(cls, config_path: str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, "r") as f:
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ValueError(f"Invalid configuration in {config_path}: {config_data}")

        config = cls(**config_data)
        config.config_path = config_path
        return config

    def save(self, config_path: str) -> None:
        """Save configuration to a YAML file."""
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = self.model_dump(exclude={"config_path"})

        with open(path, "w") as f:
            yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)

    def with_overrides(self, **overrides: Any) -> "Config":
        """Return a copy with the non-None overrides applied."""
        updates: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
        return self.model_copy(update=updates)
