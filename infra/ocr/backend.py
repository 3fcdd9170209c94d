from abc import ABC, abstractmethod
from pathlib import Path

from infra.config.schemas import BackendConfig

from .errors import InvalidInput
from .schemas import GeometryResult


class RecognitionBackend(ABC):
    """
    Contract every text-recognition backend implements.

    Callers branch on the capability properties (supports_geometry, is_free)
    rather than on the concrete class.
    """

    engine = "unknown"
    display_name = "Unknown"

    def __init__(self, config: BackendConfig):
        self.config = config

    @property
    def lang(self) -> str:
        return self.config.lang

    @property
    def supports_geometry(self) -> bool:
        return False

    @property
    def is_free(self) -> bool:
        return True

    @abstractmethod
    def is_available(self) -> bool:
        """Cheap capability probe. Must not raise or change state."""
        pass

    @abstractmethod
    def recognize(self, image_path) -> str:
        pass

    def recognize_with_geometry(self, image_path) -> GeometryResult:
        raise NotImplementedError(f"{self.engine} does not produce word geometry")

    def estimate_cost(self, page_count: int) -> float:
        return 0.0

    def initialize(self) -> None:
        pass

    def cleanup(self) -> None:
        pass

    def _require_image(self, image_path) -> Path:
        path = Path(image_path)
        if not path.is_file():
            raise InvalidInput(
                f"Image file not found: {path}",
                engine=self.engine,
                image_path=path,
            )
        return path

    def __repr__(self):
        return f"{type(self).__name__}(engine={self.engine!r})"
