"""Configuration management for the cpc application."""
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

logger = logging.getLogger("cpc.config")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration with sensible defaults.

    Class attributes hold the environment defaults. A session works on its
    own instance, so overrides loaded from a file stay with that session.
    """

    # Behaviour flags
    DEBUG: bool = _env_flag("CPC_DEBUG")
    TEST_MODE: bool = _env_flag("CPC_TEST_MODE")

    # Locations
    CACHE_DIR: str = os.getenv("CPC_CACHE_DIR", tempfile.gettempdir())
    REPORT_DIR: str = os.getenv("CPC_REPORT_DIR", tempfile.gettempdir())

    # Retry configuration
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))
    RETRY_BASE_DELAY: float = float(os.getenv("RETRY_BASE_DELAY", "2"))
    RETRY_MAX_DELAY: float = float(os.getenv("RETRY_MAX_DELAY", "60"))
    RETRY_BACKOFF_MULTIPLIER: float = float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2"))

    # Timeouts (in seconds)
    COMMAND_TIMEOUT: int = int(os.getenv("COMMAND_TIMEOUT", "300"))  # 5 minutes
    NETWORK_TIMEOUT: int = int(os.getenv("NETWORK_TIMEOUT", "30"))
    ANSIBLE_TIMEOUT: int = int(os.getenv("ANSIBLE_TIMEOUT", "1800"))  # 30 minutes
    KUBECTL_TIMEOUT: int = int(os.getenv("KUBECTL_TIMEOUT", "120"))
    TERRAFORM_TIMEOUT: int = int(os.getenv("TERRAFORM_TIMEOUT", "3600"))  # 1 hour
    TERMINATE_GRACE_PERIOD: float = float(os.getenv("TERMINATE_GRACE_PERIOD", "2"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # YAML section -> key -> attribute
    FILE_KEYS: Dict[str, Dict[str, str]] = {
        "retry": {
            "max_retries": "MAX_RETRIES",
            "base_delay": "RETRY_BASE_DELAY",
            "max_delay": "RETRY_MAX_DELAY",
            "backoff_multiplier": "RETRY_BACKOFF_MULTIPLIER",
        },
        "timeouts": {
            "command": "COMMAND_TIMEOUT",
            "network": "NETWORK_TIMEOUT",
            "ansible": "ANSIBLE_TIMEOUT",
            "kubectl": "KUBECTL_TIMEOUT",
            "terraform": "TERRAFORM_TIMEOUT",
            "grace_period": "TERMINATE_GRACE_PERIOD",
        },
        "paths": {
            "cache_dir": "CACHE_DIR",
            "report_dir": "REPORT_DIR",
        },
    }

    def load_file(self, path: Union[str, Path]) -> List[str]:
        """Apply overrides from a YAML config file to this instance.

        The class attributes stay untouched, so other Config instances keep
        the environment defaults. Nothing is applied when any value is invalid.

        Args:
            path: Path to the YAML file

        Returns:
            list: Names of the attributes that were overridden

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not valid YAML or a value has the wrong type
        """
        with open(path, 'r', encoding='utf-8') as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        overrides: Dict[str, Any] = {}
        for section, values in data.items():
            keys = self.FILE_KEYS.get(section)
            if keys is None or not isinstance(values, dict):
                logger.warning("Ignoring unknown config section '%s' in %s", section, path)
                continue
            for key, value in values.items():
                attr = keys.get(key)
                if attr is None:
                    logger.warning("Ignoring unknown config key '%s.%s' in %s", section, key, path)
                    continue
                current = getattr(self, attr)
                try:
                    overrides[attr] = type(current)(value)
                except (TypeError, ValueError) as e:
                    raise ValueError(f"Invalid value for {section}.{key} in {path}: {value!r}") from e

        for attr, value in overrides.items():
            setattr(self, attr, value)
        applied = list(overrides)
        logger.debug("Loaded configuration overrides from %s: %s", path, ", ".join(applied) or "none")
        return applied

    def as_dict(self) -> Dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in dir(self)
            if name.isupper() and name != "FILE_KEYS"
        }
