"""
Remote Gateway - Configuration Manager
========================================
Handles loading and saving of gateway configuration from two sources:

1. config.yaml  - Non-sensitive settings (port, host, limits, UI directory)
2. .env         - The shared remote-access password (GATEWAY_PASSWORD)

Usage:
    config = ConfigManager(project_dir="/path/to/gateway")
    settings = config.load()                  # Returns merged config dict
    config.update({"web": {"port": 3001}})    # Updates config.yaml
    password = config.get_password()          # From .env or environment
"""

import os
import yaml
from dotenv import dotenv_values


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 3000,
        "title": "Remote Access",
        "ui_dir": None,
        "max_body_mb": 50,
        "auth_grace_seconds": 10,
        "require_password": True,
    },
    "auth": {
        "bcrypt_rounds": 10,
    },
    "data": {
        "seed_file": None,
    },
}

PASSWORD_ENV_KEY = "GATEWAY_PASSWORD"

SECTIONS = ["web", "auth", "data"]


class ConfigManager:
    """
    Configuration manager for the remote gateway.

    Attributes:
        project_dir: Root directory of the gateway project.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env file.
    """

    def __init__(self, project_dir: str):
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")

    def load(self) -> dict:
        """
        Load and merge configuration from config.yaml with defaults.

        Missing values are filled from DEFAULTS. A corrupted file falls back
        to defaults and the parse error is recorded under '_config_error'.

        Returns:
            A dictionary containing the full configuration.
        """
        config = _deep_copy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                config["_config_error"] = str(e)

        return config

    def save(self, config: dict) -> None:
        """
        Save configuration back to config.yaml.

        Only known sections are written; internal keys (prefixed with '_')
        are dropped.
        """
        clean = {}
        for section in SECTIONS:
            if section in config:
                clean[section] = config[section]

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                clean,
                f,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )

    def update(self, updates: dict) -> dict:
        """
        Partially update configuration and save.

        Returns:
            The full updated configuration.
        """
        config = self.load()
        _deep_merge(config, updates)
        self.save(config)
        return config

    def get_password(self) -> str:
        """
        Return the shared password.

        The .env file takes precedence over the process environment.
        Returns an empty string when neither defines it.
        """
        env_values = dotenv_values(self.env_path) if os.path.exists(self.env_path) else {}
        return env_values.get(PASSWORD_ENV_KEY) or os.environ.get(PASSWORD_ENV_KEY, "")


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
