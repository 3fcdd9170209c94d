"""
Library configuration loading and management.

The library config is stored at {storage_root}/config.yaml and contains:
- The recognition backend definition (API keys use ${ENV_VAR} expansion)
- Resilience, batch and text-placement settings

Environment variables are read here and nowhere else: FOLIO_STORAGE_ROOT
locates the library, and OPENAI_API_KEY is the fallback key for the hosted
backend. A .env file in the working directory is honoured via python-dotenv.
"""

import os
from pathlib import Path
from typing import Optional
import yaml
from dotenv import load_dotenv

from .schemas import FolioConfig


CONFIG_FILENAME = "config.yaml"
DEFAULT_STORAGE_ROOT = "~/Documents/folio"


def get_storage_root() -> Path:
    """Get the library storage root from environment."""
    return Path(os.getenv("FOLIO_STORAGE_ROOT", DEFAULT_STORAGE_ROOT)).expanduser().resolve()


class ConfigManager:
    """
    Manages the library-level configuration.

    Usage:
        manager = ConfigManager(storage_root)
        config = manager.load()  # Returns FolioConfig
        manager.save(config)     # Persists to disk

    load() returns the file as written (${ENV_VAR} references intact) so a
    load/save round trip never writes secrets to disk. Use load_config() to
    get a config with references resolved.
    """

    def __init__(self, storage_root: Path):
        self.storage_root = Path(storage_root).expanduser().resolve()
        self.config_path = self.storage_root / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> FolioConfig:
        """
        Load config from disk.

        Returns FolioConfig with defaults if file doesn't exist.
        """
        if not self.config_path.exists():
            return FolioConfig.with_defaults()

        with open(self.config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return FolioConfig.model_validate(data)

    def save(self, config: FolioConfig) -> Path:
        """
        Save config to disk.

        Creates storage_root directory if needed.
        """
        self.storage_root.mkdir(parents=True, exist_ok=True)

        data = config.model_dump(mode="json", exclude_none=True)

        with open(self.config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

        return self.config_path


def resolve_config(config: FolioConfig) -> FolioConfig:
    """Return a copy with the backend API key resolved from the environment."""
    backend = config.backend
    api_key = backend.resolved_api_key()
    if api_key is None and backend.engine == "openai":
        api_key = os.getenv("OPENAI_API_KEY") or None

    return config.model_copy(update={
        "backend": backend.model_copy(update={"api_key": api_key}),
    })


def load_config(storage_root: Optional[Path] = None, env_file: Optional[Path] = None) -> FolioConfig:
    """
    Convenience function to load and resolve the library config.

    Args:
        storage_root: Root directory for the library (default: FOLIO_STORAGE_ROOT)
        env_file: Optional .env file to load before resolving

    Returns:
        FolioConfig with ${ENV_VAR} references expanded
    """
    load_dotenv(env_file)
    manager = ConfigManager(storage_root or get_storage_root())
    return resolve_config(manager.load())


def save_config(config: FolioConfig, storage_root: Optional[Path] = None) -> Path:
    manager = ConfigManager(storage_root or get_storage_root())
    return manager.save(config)
