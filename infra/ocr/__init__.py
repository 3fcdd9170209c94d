from .errors import (
    RecognitionError,
    BackendUnavailable,
    InvalidInput,
    RecognitionFailed,
    CircuitOpenError,
    classify_error,
)
from .schemas import (
    PageImage,
    BoundingBox,
    RecognizedWord,
    GeometryResult,
    ContentChunk,
    words_to_text,
)
from .hocr import parse_word_geometry, parse_geometry_result
from .backend import RecognitionBackend
from .backends import LiveTextBackend, TesseractBackend, OpenAIVisionBackend, OllamaVisionBackend
from .registry import (
    BACKEND_INFO,
    available_backends,
    recommended_engine,
    create_backend,
    is_backend_available,
    best_available_backend,
)
from .resilience import CircuitState, CircuitBreaker, BackendStats, ResilientBackend
from .batch_processor import (
    BatchOrchestrator,
    BatchResult,
    save_batch_results,
    estimate_remaining_time,
    format_duration,
    throughput,
)

__all__ = [
    "RecognitionError",
    "BackendUnavailable",
    "InvalidInput",
    "RecognitionFailed",
    "CircuitOpenError",
    "classify_error",
    "PageImage",
    "BoundingBox",
    "RecognizedWord",
    "GeometryResult",
    "ContentChunk",
    "words_to_text",
    "parse_word_geometry",
    "parse_geometry_result",
    "RecognitionBackend",
    "LiveTextBackend",
    "TesseractBackend",
    "OpenAIVisionBackend",
    "OllamaVisionBackend",
    "BACKEND_INFO",
    "available_backends",
    "recommended_engine",
    "create_backend",
    "is_backend_available",
    "best_available_backend",
    "CircuitState",
    "CircuitBreaker",
    "BackendStats",
    "ResilientBackend",
    "BatchOrchestrator",
    "BatchResult",
    "save_batch_results",
    "estimate_remaining_time",
    "format_duration",
    "throughput",
]
