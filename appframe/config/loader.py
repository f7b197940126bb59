"""
Configuration loader with environment variable handling.

Loads configuration from:
1. config.yaml (main config)
2. .env.local (loaded into process env, never overrides it)
3. Environment flags (highest priority): APP_DEBUG, APP_TRACK_ERRORS
"""

from pathlib import Path
from typing import Any, Dict

import yaml

from .env import env_flag, env_flag_set, load_env

# env var -> top level config key
ENV_FLAGS = {
    "APP_DEBUG": "debug",
    "APP_TRACK_ERRORS": "track_errors",
}


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources.

    Priority (highest to lowest):
    1. OS Environment variables
    2. .env.local file
    3. config.yaml
    """

    def __init__(self, config_dir: Path = Path("config")):
        self.config_dir = Path(config_dir)
        self.config_file = self.config_dir / "config.yaml"
        self.secrets_file = self.config_dir / ".env.local"

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from all sources.

        Returns:
            Merged configuration dictionary

        Raises:
            FileNotFoundError: If config.yaml doesn't exist
            ValueError: If config.yaml is empty or not a mapping
        """
        if not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        with open(self.config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if config is None:
            raise ValueError(f"Empty configuration file: {self.config_file}")
        if not isinstance(config, dict):
            raise ValueError(
                f"Configuration root must be a mapping, got {type(config).__name__}: {self.config_file}"
            )

        # do NOT override already-set OS env vars
        load_env([self.config_dir], filenames=(".env.local",), override=False)

        for env_name, key in ENV_FLAGS.items():
            if env_flag_set(env_name):
                config[key] = env_flag(env_name)

        return config

    def load_and_validate(self):
        """
        Load and validate configuration.

        Returns:
            AppConfig instance
        """
        from .schema import AppConfig

        config_dict = self.load()

        try:
            return AppConfig(**config_dict)
        except Exception as e:
            raise ValueError(f"Configuration validation failed: {e}") from e


def load_config(config_dir: Path = Path("config")):
    """
    Convenience function to load and validate configuration.

    Args:
        config_dir: Directory containing config files

    Returns:
        Validated AppConfig instance
    """
    loader = ConfigLoader(config_dir)
    return loader.load_and_validate()
