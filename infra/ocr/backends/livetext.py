import importlib.util
import logging
import sys

from ..backend import RecognitionBackend
from ..errors import BackendUnavailable, RecognitionFailed

logger = logging.getLogger(__name__)

# Tesseract-style codes -> Vision framework language tags
LANGUAGE_TAGS = {
    "eng": "en-US",
    "deu": "de-DE",
    "fra": "fr-FR",
    "spa": "es-ES",
    "ita": "it-IT",
    "por": "pt-BR",
    "nld": "nl-NL",
    "jpn": "ja-JP",
    "kor": "ko-KR",
    "chi_sim": "zh-Hans",
    "chi_tra": "zh-Hant",
}


def language_preference(lang: str):
    tags = [LANGUAGE_TAGS[code] for code in lang.split("+") if code in LANGUAGE_TAGS]
    return tags or None


class LiveTextBackend(RecognitionBackend):
    """macOS Vision text recognition (Live Text) through ocrmac."""

    engine = "livetext"
    display_name = "Live Text"

    def is_available(self) -> bool:
        if sys.platform != "darwin":
            return False
        return importlib.util.find_spec("ocrmac") is not None

    def recognize(self, image_path) -> str:
        if not self.is_available():
            raise BackendUnavailable(self.engine, "Live Text is only available on macOS with ocrmac installed")

        path = self._require_image(image_path)

        from ocrmac import ocrmac

        try:
            annotations = ocrmac.OCR(
                str(path),
                recognition_level="accurate",
                language_preference=language_preference(self.config.lang),
            ).recognize()
        except Exception as e:
            raise RecognitionFailed(
                f"Live Text failed on {path.name}: {e}",
                engine=self.engine,
                image_path=path,
            ) from e

        # (text, confidence, bbox) per recognized line, in reading order
        lines = [text for text, _confidence, _bbox in annotations if text.strip()]
        logger.debug(f"{path.name}: {len(lines)} lines")
        return "\n".join(lines).strip()
