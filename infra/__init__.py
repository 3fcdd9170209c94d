from infra.config import FolioConfig, load_config

from infra.logger import (
    PipelineLogger,
    create_logger,
)

from infra.storage import (
    RunState,
    RunStateManager,
)

from infra.ocr import (
    RecognitionBackend,
    ResilientBackend,
    BatchOrchestrator,
    create_backend,
    best_available_backend,
)

__all__ = [
    "FolioConfig",
    "load_config",

    "PipelineLogger",
    "create_logger",

    "RunState",
    "RunStateManager",

    "RecognitionBackend",
    "ResilientBackend",
    "BatchOrchestrator",
    "create_backend",
    "best_available_backend",
]
