"""
API Configuration Manager
Centralized management of backend/storage configuration and connector instances
"""
from typing import Dict, Any, Mapping, Optional
from pathlib import Path
import copy
import logging
import os

import requests
import toml

from .base_connector import APIConfig
from .soil_connector import SoilAPIConnector
from cloudtree_core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class APIConfigManager:
    """
    Loads configuration and creates connector instances

    Resolution order (later wins): built-in defaults, TOML file, environment.

    Usage:
        config_manager = APIConfigManager()
        connector = config_manager.get_soil_connector()
        soils = connector.get_soils()
    """

    CONFIG_ENV_VAR = "CLOUDTREE_CONFIG"
    DEFAULT_CONFIG_FILE = Path("cloudtree.toml")

    DEFAULT_CONFIG: Dict[str, Any] = {
        "api": {
            "backend": {
                "host": "cloudtree.local",
                "http_port": "8000",
                "ws_port": "9001",
                "timeout": 10,
                "connectivity_timeout": 3,
            },
        },
        "storage": {
            "db_path": "local_data/cloudtree.db",
        },
    }

    # environment variable -> (section, key) in the backend/storage tables
    ENV_OVERRIDES = {
        "DEFAULT_IP": ("backend", "host"),
        "HTTP_PORT": ("backend", "http_port"),
        "WS_PORT": ("backend", "ws_port"),
        "CLOUDTREE_DB_PATH": ("storage", "db_path"),
    }

    def __init__(
        self,
        config_path: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            config_path: TOML file to read (default: $CLOUDTREE_CONFIG or ./cloudtree.toml)
            environ: Environment mapping (default: os.environ)
        """
        self._environ = os.environ if environ is None else environ
        if config_path is None:
            config_path = Path(self._environ.get(self.CONFIG_ENV_VAR, str(self.DEFAULT_CONFIG_FILE)))
        self.config_path = Path(config_path)
        self.configs = self._load_configs()

    def _load_configs(self) -> Dict[str, Any]:
        """
        Build the effective configuration

        Expected cloudtree.toml format:
        [api.backend]
        host = "cloudtree.local"
        http_port = "8000"
        ws_port = "9001"
        timeout = 10
        connectivity_timeout = 3

        [storage]
        db_path = "local_data/cloudtree.db"
        """
        configs = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                file_config = toml.load(self.config_path)
            except (toml.TomlDecodeError, OSError) as e:
                raise ConfigurationError(
                    f"Cannot read configuration file {self.config_path}: {e}",
                    config_key=str(self.config_path),
                ) from e

            backend = file_config.get("api", {}).get("backend", {})
            configs["api"]["backend"].update(backend)
            configs["storage"].update(file_config.get("storage", {}))
            logger.debug(f"Loaded configuration from {self.config_path}")

        for env_name, (section, key) in self.ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if value:
                target = configs["api"]["backend"] if section == "backend" else configs[section]
                target[key] = value

        return configs

    @property
    def backend(self) -> Dict[str, Any]:
        return self.configs["api"]["backend"]

    def _number(self, key: str, cast=float):
        value = self.backend.get(key)
        try:
            return cast(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid value for {key}: {value!r}",
                config_key=f"api.backend.{key}",
                expected_type=cast.__name__,
            )

    def get_base_url(self) -> str:
        host = self.backend.get("host") or self.DEFAULT_CONFIG["api"]["backend"]["host"]
        return f"http://{host}:{self._number('http_port', int)}"

    def get_request_timeout(self) -> float:
        return self._number("timeout")

    def get_connectivity_timeout(self) -> float:
        return self._number("connectivity_timeout")

    def get_websocket_port(self) -> int:
        """Port of the live-sensor feed (consumed by the sensor screen, not here)"""
        return self._number("ws_port", int)

    def get_database_path(self) -> Path:
        return Path(self.configs["storage"]["db_path"])

    def get_backend_config(self) -> APIConfig:
        """Build APIConfig for the soil backend"""
        return APIConfig(
            api_name="soil_backend",
            base_url=self.get_base_url(),
            headers={"Accept": "application/json"},
            timeout=self.get_request_timeout(),
        )

    def get_soil_connector(self, session: Optional[requests.Session] = None) -> SoilAPIConnector:
        """
        Get the soil backend connector

        Args:
            session: Optional pre-built HTTP session (tests pass a mock)

        Returns:
            Configured connector instance
        """
        return SoilAPIConnector(self.get_backend_config(), session=session)
