"""Configuration for the application tracker.

Loads from YAML config file with environment variable overrides.
Pattern: CONFIG__{SECTION}__{KEY} overrides nested YAML keys.
Example: CONFIG__LEDGER__INITIAL_STATUS=pending
"""

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


DEFAULT_DB_PATH = "/tmp/jobtrack.db"


class DatabaseConfig(BaseModel):
    path: str = DEFAULT_DB_PATH
    echo: bool = False


class LedgerConfig(BaseModel):
    # Status given to freshly appended stage entries
    initial_status: Literal["active", "pending"] = "active"


class AnalyticsConfig(BaseModel):
    interview_keyword: str = "interview"
    unknown_source_label: str = "Unknown"
    response_min_order: int = Field(
        default=1, ge=0, description="Template order a stage must exceed to count as a response"
    )


class TrackerConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    ledger: LedgerConfig = LedgerConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()


def _apply_env_overrides(config_dict: dict, prefix: str = "CONFIG") -> dict:
    """Apply environment variable overrides to config dict.

    Pattern: CONFIG__SECTION__KEY=value maps to config[section][key] = value
    """
    for key, value in os.environ.items():
        if not key.startswith(f"{prefix}__"):
            continue
        parts = key[len(prefix) + 2 :].lower().split("__")
        target = config_dict
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        if value.lower() in ("true", "false"):
            value = value.lower() == "true"
        elif value.isdigit():
            value = int(value)
        target[parts[-1]] = value
    return config_dict


def load_config(config_path: Optional[str] = None) -> TrackerConfig:
    """Load configuration from YAML file with env overrides.

    Priority: env vars > YAML file > defaults
    """
    config_dict = {}

    if config_path is None:
        config_path = os.getenv("CONFIG_PATH", "config/jobtrack.yml")
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            config_dict = yaml.safe_load(f) or {}

    config_dict = _apply_env_overrides(config_dict)

    # Dedicated env var for the DB file, same as the CI jobs use
    db_path = os.getenv("JOBTRACK_DB_PATH")
    if db_path:
        config_dict.setdefault("database", {})["path"] = db_path

    return TrackerConfig(**config_dict)


_config: Optional[TrackerConfig] = None


def get_config() -> TrackerConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> TrackerConfig:
    global _config
    _config = load_config(config_path)
    return _config
