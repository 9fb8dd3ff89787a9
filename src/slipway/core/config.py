"""Slipway configuration — reads from slipway.toml, env vars, and CLI args."""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger("slipway.config")


class SlipwaySettings(BaseSettings):
    """Daemon settings."""

    # Server
    host: str = "0.0.0.0"
    port: int = 8400
    log_level: str = "info"

    # Database (SQLite by default for zero-setup)
    database_url: str = "sqlite+aiosqlite:///slipway.db"

    # Auth
    api_key: str = "slipway_dev_key"

    # Trigger
    target_branch: str = "main"

    # Build
    source_path: str = "slides.md"
    workspace_dir: str = "./.slipway/runs"
    output_dir: str = "dist"  # relative to the run workspace
    entry_document: str = "index.html"
    renderer_command: List[str] = Field(
        default_factory=lambda: ["marp", "{source}", "--output", "{output}/{entry}"]
    )
    renderer_html_flag: str = "--html"
    emit_html: bool = True
    render_timeout_seconds: int = 600

    # Artifacts
    artifacts_dir: str = "./artifacts"
    artifact_retention_seconds: int = 86400
    retention_sweep_seconds: int = 3600

    # Deploy
    environment: str = "github-pages"
    publisher: str = "directory"  # directory | http
    publish_dir: str = "./public"
    publish_base_url: str = "http://localhost:8400/site"
    publish_keep_releases: int = 3  # directory publisher: releases kept on disk
    publish_api_url: str | None = None
    id_token_ttl_seconds: int = 600
    serialize_deploys: bool = False

    model_config = {"env_prefix": "SLIPWAY_", "env_file": ".env", "extra": "ignore"}


class ClientSettings(BaseSettings):
    """CLI client settings."""

    host: str = "http://localhost:8400"
    api_key: str = "slipway_dev_key"

    model_config = {"env_prefix": "SLIPWAY_"}


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}


def _load_toml_config() -> Dict[str, Any]:
    """Load configuration from slipway.toml files.

    Searches for slipway.toml in:
    1. SLIPWAY_HOME (~/.slipway/slipway.toml by default)
    2. Current directory (./slipway.toml)

    Keys may sit at the top level or under a ``[slipway]`` table. The local
    file takes precedence over the global one.
    """
    config: Dict[str, Any] = {}

    slipway_home = Path(os.environ.get("SLIPWAY_HOME", "~/.slipway")).expanduser()
    for path in (slipway_home / "slipway.toml", Path("slipway.toml")):
        if not path.exists():
            continue
        data = _read_toml(path)
        config.update(data.pop("slipway", {}))
        config.update(data)

    return config


def get_settings() -> SlipwaySettings:
    toml_config = _load_toml_config()
    overrides = {k: v for k, v in toml_config.items() if k in SlipwaySettings.model_fields}
    return SlipwaySettings(**overrides)


def get_client_settings() -> ClientSettings:
    return ClientSettings()
