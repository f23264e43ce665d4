"""
Pipeline Configuration Module
=============================

Loads crawler limits, resolution weights and store credentials from a
YAML file plus environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_USER_AGENT = "ZooBabiesBot/0.1 (+https://github.com/zoo-babies/zoo-babies)"


@dataclass
class GlobalConfig:
    """Outbound fetch settings."""

    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 20.0
    max_retries: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> GlobalConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            user_agent=data.get("user_agent", DEFAULT_USER_AGENT),
            request_timeout=float(data.get("request_timeout", 20.0)),
            max_retries=int(data.get("max_retries", 1)),
        )


@dataclass
class LimitsConfig:
    """Per-run ceilings that keep each invocation's request count bounded."""

    max_feed_sources_per_run: int = 25
    max_site_sources_per_run: int = 10
    max_detail_pages_per_source: int = 5
    site_fallback_links: int = 3
    max_wikipedia_pages: int = 3
    fingerprint_chunk_size: int = 1000
    row_chunk_size: int = 500

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LimitsConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        return cls(
            max_feed_sources_per_run=int(data.get("max_feed_sources_per_run", 25)),
            max_site_sources_per_run=int(data.get("max_site_sources_per_run", 10)),
            max_detail_pages_per_source=int(data.get("max_detail_pages_per_source", 5)),
            site_fallback_links=int(data.get("site_fallback_links", 3)),
            max_wikipedia_pages=int(data.get("max_wikipedia_pages", 3)),
            fingerprint_chunk_size=int(data.get("fingerprint_chunk_size", 1000)),
            row_chunk_size=int(data.get("row_chunk_size", 500)),
        )


def _default_kind_weights() -> dict[str, int]:
    return {"site": 2, "rss": 2, "youtube": 1, "googlenews": 2}


@dataclass
class ResolutionConfig:
    """Weights and thresholds for entity resolution."""

    batch_size: int = 20
    window_days: int = 10
    creation_threshold: int = 3
    kind_weights: dict[str, int] = field(default_factory=_default_kind_weights)
    birth_weight: int = 2
    zoo_weight: int = 1
    date_weight: int = 1
    processed_chunk_size: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ResolutionConfig:
        """Create from dictionary, using defaults for missing values."""
        if data is None:
            return cls()
        weights = data.get("weights", {})
        kind_weights = _default_kind_weights()
        kind_weights.update({k: int(v) for k, v in (weights.get("kinds") or {}).items()})
        return cls(
            batch_size=int(data.get("batch_size", 20)),
            window_days=int(data.get("window_days", 10)),
            creation_threshold=int(data.get("creation_threshold", 3)),
            kind_weights=kind_weights,
            birth_weight=int(weights.get("birth", 2)),
            zoo_weight=int(weights.get("zoo", 1)),
            date_weight=int(weights.get("date", 1)),
            processed_chunk_size=int(data.get("processed_chunk_size", 100)),
        )


@dataclass
class StoreConfig:
    """Credentials for the hosted store, or a local database URL."""

    supabase_url: str | None = None
    service_role_key: str | None = None
    database_url: str | None = None

    @property
    def use_rest(self) -> bool:
        """True when the hosted REST store is configured."""
        return bool(self.supabase_url and self.service_role_key)

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Read store settings from the environment."""
        url = os.environ.get("SUPABASE_URL") or None
        return cls(
            supabase_url=url.rstrip("/") if url else None,
            service_role_key=os.environ.get("SUPABASE_SERVICE_ROLE") or None,
            database_url=os.environ.get("DATABASE_URL") or None,
        )


@dataclass
class PipelineConfig:
    """Top-level configuration for every job."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    run_token: str | None = None
    youtube_api_key: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PipelineConfig:
        """Create from a parsed YAML document; store settings come from the environment."""
        data = data or {}
        return cls(
            global_config=GlobalConfig.from_dict(data.get("global")),
            limits=LimitsConfig.from_dict(data.get("limits")),
            resolution=ResolutionConfig.from_dict(data.get("resolution")),
            store=StoreConfig.from_env(),
            run_token=os.environ.get("RUN_TOKEN") or None,
            youtube_api_key=os.environ.get("YOUTUBE_API_KEY") or None,
        )


def load_config(config_path: Path | str) -> PipelineConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to the pipeline.yaml file

    Returns:
        Parsed PipelineConfig
    """
    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)

    return PipelineConfig.from_dict(data)


# Global config instance
_default_config: PipelineConfig | None = None


def get_default_config() -> PipelineConfig:
    """
    Get the default pipeline configuration.

    Reads the file named by PIPELINE_CONFIG_PATH, falling back to
    config/pipeline.yaml at the project root, then to built-in defaults.
    """
    global _default_config

    if _default_config is None:
        config_path = os.environ.get("PIPELINE_CONFIG_PATH")
        if config_path:
            path = Path(config_path)
        else:
            path = Path(__file__).parent.parent / "config" / "pipeline.yaml"

        if path.exists():
            _default_config = load_config(path)
        else:
            _default_config = PipelineConfig.from_dict(None)

    return _default_config


def reset_default_config() -> None:
    """Reset the default configuration (useful for testing)."""
    global _default_config
    _default_config = None
