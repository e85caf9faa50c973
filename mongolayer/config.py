"""
Configuration helpers for mongolayer.
Supports environment variables and YAML files for deployment configuration.
"""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union

import yaml

from .exceptions import ValidationError


DEFAULT_URI = "mongodb://localhost:27017"
DEFAULT_DATABASE = "mongolayer"
DEFAULT_PER_PAGE = 15


class Config:
    """
    Configuration helper that reads from environment variables or YAML.

    Environment variables:
        MONGOLAYER_URI: MongoDB connection string (default: mongodb://localhost:27017)
        MONGOLAYER_DATABASE: Database name (default: mongolayer)
        MONGOLAYER_APP_NAME: Optional application name reported to the server
        MONGOLAYER_PER_PAGE: Default page size for paginate() (default: 15)
    """

    ENV_KEYS = {
        "uri": "MONGOLAYER_URI",
        "database": "MONGOLAYER_DATABASE",
        "app_name": "MONGOLAYER_APP_NAME",
        "per_page": "MONGOLAYER_PER_PAGE",
    }

    @staticmethod
    def from_env() -> Dict[str, Any]:
        """
        Create configuration from environment variables.

        Returns:
            Dict with configuration parameters for connect()

        Example:
            from mongolayer import connect
            from mongolayer.config import Config

            database = await connect(Config.from_env())
        """
        config = {
            "uri": os.getenv("MONGOLAYER_URI", DEFAULT_URI),
            "database": os.getenv("MONGOLAYER_DATABASE", DEFAULT_DATABASE),
            "per_page": Config._parse_per_page(
                os.getenv("MONGOLAYER_PER_PAGE", DEFAULT_PER_PAGE)
            ),
        }

        app_name = os.getenv("MONGOLAYER_APP_NAME")
        if app_name:
            config["app_name"] = app_name

        return config

    @staticmethod
    def from_yaml(path: Union[str, Path]) -> Dict[str, Any]:
        """
        Load configuration from a YAML file.

        Keys are the lower-case names (uri, database, app_name, per_page).
        Environment variables override values found in the file.

        Args:
            path: Path to the YAML file

        Returns:
            Configuration dict
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValidationError(f"Configuration file {path} must contain a mapping")

        config = {
            "uri": data.get("uri", DEFAULT_URI),
            "database": data.get("database", DEFAULT_DATABASE),
            "per_page": data.get("per_page", DEFAULT_PER_PAGE),
        }
        if data.get("app_name"):
            config["app_name"] = data["app_name"]

        for key, env_name in Config.ENV_KEYS.items():
            value = os.getenv(env_name)
            if value:
                config[key] = value

        config["per_page"] = Config._parse_per_page(config["per_page"])
        return config

    @staticmethod
    def for_local(database: str = DEFAULT_DATABASE, port: int = 27017) -> Dict[str, Any]:
        """
        Configuration for a local MongoDB server.

        Args:
            database: Database name
            port: MongoDB port (default: 27017)

        Returns:
            Configuration dict for local setup
        """
        return {
            "uri": f"mongodb://localhost:{port}",
            "database": database,
            "per_page": DEFAULT_PER_PAGE,
        }

    @staticmethod
    def _parse_per_page(value: Any) -> int:
        try:
            per_page = int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"per_page must be an integer, got {value!r}") from e

        if per_page < 1:
            raise ValidationError(f"per_page must be positive, got {per_page}")

        return per_page
