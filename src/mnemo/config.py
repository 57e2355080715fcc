"""Configuration loading from environment variables and mnemo.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_CONFIG_FILENAME = "mnemo.toml"
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MnemoConfig:
    """Top-level mnemo configuration. Resolved once, read-only afterwards."""

    api_url: str = "http://localhost:8080"
    api_key: str | None = None

    similarity_threshold: float = 0.6
    max_memories: int = 5
    max_project_memories: int = 10
    max_profile_items: int = 5
    min_salience: float = 0.3

    inject_profile: bool = True
    scope_prefix: str = "opencode"
    default_sector: str = "semantic"

    timeout: float = 30.0
    log_level: str = "INFO"


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def load_config(config_path: Path | None = None) -> MnemoConfig:
    """Load configuration from environment variables and optional mnemo.toml.

    Priority: environment variables > mnemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.mnemo/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, Path.home() / ".mnemo" / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    d = MnemoConfig()
    return MnemoConfig(
        api_url=os.getenv("OPENMEMORY_API_URL", file_data.get("api_url", d.api_url)),
        api_key=os.getenv("OPENMEMORY_API_KEY", file_data.get("api_key")) or None,
        similarity_threshold=float(
            os.getenv(
                "MNEMO_SIMILARITY_THRESHOLD",
                file_data.get("similarity_threshold", d.similarity_threshold),
            )
        ),
        max_memories=int(os.getenv("MNEMO_MAX_MEMORIES", file_data.get("max_memories", d.max_memories))),
        max_project_memories=int(
            os.getenv(
                "MNEMO_MAX_PROJECT_MEMORIES",
                file_data.get("max_project_memories", d.max_project_memories),
            )
        ),
        max_profile_items=int(
            os.getenv("MNEMO_MAX_PROFILE_ITEMS", file_data.get("max_profile_items", d.max_profile_items))
        ),
        min_salience=float(os.getenv("MNEMO_MIN_SALIENCE", file_data.get("min_salience", d.min_salience))),
        inject_profile=_as_bool(
            os.getenv("MNEMO_INJECT_PROFILE", file_data.get("inject_profile", d.inject_profile))
        ),
        scope_prefix=os.getenv("MNEMO_SCOPE_PREFIX", file_data.get("scope_prefix", d.scope_prefix)),
        default_sector=os.getenv("MNEMO_DEFAULT_SECTOR", file_data.get("default_sector", d.default_sector)),
        timeout=float(os.getenv("MNEMO_TIMEOUT", file_data.get("timeout", d.timeout))),
        log_level=os.getenv("MNEMO_LOG_LEVEL", file_data.get("log_level", d.log_level)),
    )
