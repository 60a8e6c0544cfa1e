"""Configuration loaded from YAML and merged over built-in defaults."""

import copy
import logging
import os
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EZLENS_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


class Config:
    """Configuration manager that loads from YAML and merges with defaults."""

    DEFAULTS = {
        "storage": {
            "path": "ezlens.duckdb",
        },
        "import": {
            "batch_size": 5000,
            "progress_every": 10000,
            "max_failure_samples": 100,
        },
        "server": {
            "host": "127.0.0.1",
            "port": 8080,
            "debug": False,
        },
        "logging": {
            "level": "INFO",
        },
    }

    def __init__(self, config_path=None):
        self._config = copy.deepcopy(self.DEFAULTS)

        if config_path is not None:
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f)

                if user_config and isinstance(user_config, dict):
                    self._config = self._deep_merge(self._config, user_config)
            except FileNotFoundError:
                pass
            except yaml.YAMLError:
                logger.warning("Invalid YAML in %s, using defaults", config_path)

    @staticmethod
    def _deep_merge(base, override):
        """Recursively merge override dict into base dict."""
        result = copy.deepcopy(base)
        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = Config._deep_merge(result[key], value)
            else:
                result[key] = copy.deepcopy(value)
        return result

    def get(self, key, default=None):
        """Get a top-level config key."""
        return self._config.get(key, default)

    def __getitem__(self, key):
        return self._config[key]


def load_config(path: str | None = None) -> Config:
    """Load Config from *path*, then $EZLENS_CONFIG, then ./config.yaml."""
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)
    return Config(path)


@dataclass(frozen=True)
class ImportSettings:
    batch_size: int = 5000
    progress_every: int = 10000
    max_failure_samples: int = 100

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.progress_every < 1:
            raise ValueError(f"progress_every must be >= 1, got {self.progress_every}")
        if self.max_failure_samples < 0:
            raise ValueError(
                f"max_failure_samples must be >= 0, got {self.max_failure_samples}"
            )

    @classmethod
    def from_config(cls, config: Config) -> "ImportSettings":
        section = config.get("import") or {}
        return cls(
            batch_size=int(section.get("batch_size", cls.batch_size)),
            progress_every=int(section.get("progress_every", cls.progress_every)),
            max_failure_samples=int(
                section.get("max_failure_samples", cls.max_failure_samples)
            ),
        )
