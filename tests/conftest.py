"""
Shared fixtures for infra/pipeline tests.

Real filesystem operations with temporary directories throughout. External
engines are replaced by ScriptedBackend, an in-process backend that replays
a list of outcomes.
"""

import threading
from pathlib import Path

import pytest

from infra.config.schemas import BackendConfig
from infra.ocr.backend import RecognitionBackend
from infra.ocr.hocr import parse_geometry_result


class ScriptedBackend(RecognitionBackend):
    """
    Backend that replays `outcomes` one per call: an exception instance is
    raised, a string is returned. Once outcomes run out every call succeeds
    with "Text of <file name>".
    """

    engine = "scripted"
    display_name = "Scripted"

    def __init__(self, outcomes=None, markup=None, geometry=False, available=True):
        super().__init__(BackendConfig())
        self.outcomes = list(outcomes or [])
        self.markup = markup
        self.geometry = geometry
        self.available = available
        self.calls = []
        self._lock = threading.Lock()

    @property
    def supports_geometry(self) -> bool:
        return self.geometry

    def is_available(self) -> bool:
        return self.available

    def _next(self, image_path):
        with self._lock:
            self.calls.append(str(image_path))
            outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is None:
            return f"Text of {Path(image_path).name}"
        return outcome

    def recognize(self, image_path) -> str:
        return self._next(image_path)

    def recognize_with_geometry(self, image_path):
        self._next(image_path)
        return parse_geometry_result(self.markup or "")


@pytest.fixture
def scripted_backend():
    """The ScriptedBackend class; call it with the outcomes a test needs."""
    return ScriptedBackend


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    recorded = []

    def _sleep(seconds):
        recorded.append(seconds)

    _sleep.calls = recorded
    return _sleep
