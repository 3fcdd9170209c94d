from .livetext import LiveTextBackend
from .tesseract import TesseractBackend
from .openai_vision import OpenAIVisionBackend
from .ollama import OllamaVisionBackend

__all__ = [
    "LiveTextBackend",
    "TesseractBackend",
    "OpenAIVisionBackend",
    "OllamaVisionBackend",
]
