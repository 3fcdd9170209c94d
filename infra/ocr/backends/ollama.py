"""
Local vision-model backend served by Ollama.

The model runs in a long-lived `ollama serve` process and is reached over
HTTP, so nothing is loaded into this process. Any vision model Ollama can
serve works; qwen2.5vl:7b is the default.

Setup:
    ollama serve
    ollama pull qwen2.5vl:7b
"""

import logging
from typing import List

import requests

from ..backend import RecognitionBackend
from ..errors import BackendUnavailable, RecognitionFailed
from ..images import encode_page_image

logger = logging.getLogger(__name__)

PROMPT = (
    "Extract all text from this page image exactly as it appears. "
    "Output only the text content, nothing else. Preserve line breaks."
)

PROBE_TIMEOUT = 2.0


class OllamaVisionBackend(RecognitionBackend):
    engine = "local-vision"
    display_name = "Local Vision Model"

    def __init__(self, config):
        super().__init__(config)
        self.base_url = config.host.rstrip("/")
        self._session = requests.Session()

    def _list_models(self) -> List[str]:
        response = self._session.get(f"{self.base_url}/api/tags", timeout=PROBE_TIMEOUT)
        response.raise_for_status()
        payload = response.json()
        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            raise ValueError(f"Unexpected /api/tags response: {str(payload)[:200]}")
        return [m.get("name", "") for m in models if isinstance(m, dict)]

    def _has_model(self, names: List[str]) -> bool:
        model = self.config.model
        if ":" not in model:
            return model in names or f"{model}:latest" in names
        return model in names

    def is_available(self) -> bool:
        try:
            return self._has_model(self._list_models())
        except (requests.RequestException, ValueError):
            return False

    def initialize(self) -> None:
        try:
            names = self._list_models()
        except (requests.RequestException, ValueError) as e:
            raise BackendUnavailable(
                self.engine,
                f"Ollama server not reachable at {self.base_url} ({e}). Start it with: ollama serve",
            )
        if not self._has_model(names):
            raise BackendUnavailable(
                self.engine,
                f"Model '{self.config.model}' not found. Download it with: ollama pull {self.config.model}",
            )
        logger.info(f"Ollama ready at {self.base_url} with {self.config.model}")

    def cleanup(self) -> None:
        self._session.close()

    def recognize(self, image_path) -> str:
        path = self._require_image(image_path)
        _mime_type, image_base64 = encode_page_image(path, self.config.max_image_dim, engine=self.engine)

        options = {"temperature": self.config.temperature}
        if self.config.device == "cpu":
            options["num_gpu"] = 0

        payload = {
            "model": self.config.model,
            "prompt": PROMPT,
            "images": [image_base64],
            "stream": False,
            "keep_alive": self.config.keep_alive,
            "options": options,
        }

        try:
            response = self._session.post(
                f"{self.base_url}/api/generate",
                json=payload,
                timeout=self.config.timeout,
            )
        except requests.Timeout as e:
            raise self._failure(path, f"timed out after {self.config.timeout:.0f}s", "timeout") from e
        except requests.ConnectionError as e:
            raise self._failure(path, f"cannot reach {self.base_url}: {e}", "network") from e

        if response.status_code == 404:
            raise self._failure(path, f"model '{self.config.model}' not found", "model_missing", fatal=True)
        if response.status_code >= 500:
            raise self._failure(path, f"server error {response.status_code}: {response.text[:200]}", "server")
        if response.status_code >= 400:
            raise self._failure(path, f"request rejected {response.status_code}: {response.text[:200]}", "api", fatal=True)

        try:
            text = response.json().get("response", "")
        except ValueError as e:
            raise self._failure(path, f"malformed response: {e}", "server") from e

        text = (text or "").strip()
        if not text:
            raise self._failure(path, "empty response", "empty_response")
        return text

    def _failure(self, path, reason: str, category: str, fatal: bool = False) -> RecognitionFailed:
        return RecognitionFailed(
            f"Local vision failed on {path.name}: {reason}",
            engine=self.engine,
            image_path=path,
            category=category,
            fatal=fatal,
        )
