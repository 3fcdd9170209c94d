"""
Configuration management for folio.

Library config: {storage_root}/config.yaml

Usage:
    from infra.config import load_config

    config = load_config()          # resolved, ready for backends
    backend_config = config.backend
"""

from .schemas import (
    ENGINES,
    BackendConfig,
    ResilienceConfig,
    BatchConfig,
    PlacementConfig,
    FolioConfig,
    resolve_env_vars,
)

from .loader import (
    CONFIG_FILENAME,
    ConfigManager,
    get_storage_root,
    load_config,
    resolve_config,
    save_config,
)


__all__ = [
    # Schemas
    "ENGINES",
    "BackendConfig",
    "ResilienceConfig",
    "BatchConfig",
    "PlacementConfig",
    "FolioConfig",
    "resolve_env_vars",
    # Loading
    "CONFIG_FILENAME",
    "ConfigManager",
    "get_storage_root",
    "load_config",
    "resolve_config",
    "save_config",
]
