# depradar/config.py
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml
from platformdirs import user_data_path

logger = logging.getLogger(__name__)

APP_NAME = "depradar"
CONFIG_ENV_VAR = "DEPRADAR_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".depradar.yaml"


def default_cache_path() -> Path:
    return user_data_path(appname=APP_NAME, appauthor=False) / "cache.json"


@dataclass
class Config:
    projects_dir: str = str(Path.home() / "Projects")
    scan_depth: int = 2
    exclude: list[str] = field(default_factory=list)
    cache_path: str = field(default_factory=lambda: str(default_cache_path()))
    osv_batch_size: int = 100
    osv_timeout: float = 15
    fetch_timeout: float = 10
    outdated_timeout: float = 30
    hydrate_advisories: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}'")
                continue
            if value is None:
                continue
            kwargs[key] = value
        config = cls(**kwargs)
        config.projects_dir = str(Path(config.projects_dir).expanduser())
        config.cache_path = str(Path(config.cache_path).expanduser())
        return config


def find_config_path(explicit: str | None = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(config_path: str | None = None) -> Config:
    """
    Loads the YAML config. A missing or malformed file falls back to defaults.
    """
    path = find_config_path(config_path)
    if not path.is_file():
        logger.debug(f"Config file '{path}' not found. Using defaults.")
        return Config()
    try:
        with open(path, "r", encoding="utf-8") as f:
            loaded_yaml = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML configuration file '{path}': {e}")
        return Config()
    except OSError as e:
        logger.error(f"Could not read configuration file '{path}': {e}")
        return Config()
    if not isinstance(loaded_yaml, dict):
        logger.warning(f"Config file '{path}' does not contain a mapping. Using defaults.")
        return Config()
    logger.info(f"Loaded configuration from {path}")
    try:
        return Config.from_dict(loaded_yaml)
    except (TypeError, ValueError) as e:
        logger.error(f"Invalid configuration in '{path}': {e}")
        return Config()
