import logging
from typing import List

import pytesseract
from pytesseract import TesseractError, TesseractNotFoundError

from ..backend import RecognitionBackend
from ..errors import BackendUnavailable, RecognitionFailed
from ..hocr import parse_geometry_result
from ..images import load_image
from ..schemas import GeometryResult

logger = logging.getLogger(__name__)

INSTALL_HINT = (
    "Tesseract is not installed. Install with: brew install tesseract (macOS) "
    "or apt-get install tesseract-ocr (Linux)"
)


class TesseractBackend(RecognitionBackend):
    """Tesseract through pytesseract: plain text, or hOCR for word geometry."""

    engine = "tesseract"
    display_name = "Tesseract"

    # Fully automatic page segmentation, default engine mode
    TESSERACT_CONFIG = "--psm 3 --oem 3"

    @property
    def supports_geometry(self) -> bool:
        return True

    def is_available(self) -> bool:
        try:
            pytesseract.get_tesseract_version()
            return True
        except (TesseractNotFoundError, OSError):
            return False

    def available_languages(self) -> List[str]:
        try:
            return sorted(pytesseract.get_languages(config=""))
        except (TesseractNotFoundError, OSError):
            return []

    def recognize(self, image_path) -> str:
        path = self._require_image(image_path)
        image = load_image(path, engine=self.engine)
        text = self._run(
            pytesseract.image_to_string,
            image,
            path,
        )
        return text.strip()

    def recognize_with_geometry(self, image_path) -> GeometryResult:
        path = self._require_image(image_path)
        image = load_image(path, engine=self.engine)
        hocr = self._run(
            pytesseract.image_to_pdf_or_hocr,
            image,
            path,
            extension="hocr",
        )
        result = parse_geometry_result(hocr)
        logger.debug(f"{path.name}: {len(result.words)} words from hOCR")
        return result

    def _run(self, func, image, path, **kwargs):
        try:
            return func(
                image,
                lang=self.config.lang,
                config=self.TESSERACT_CONFIG,
                timeout=self.config.timeout,
                **kwargs
            )
        except TesseractNotFoundError:
            raise BackendUnavailable(self.engine, INSTALL_HINT)
        except TesseractError as e:
            message = str(getattr(e, "message", e))
            # A missing traineddata file will not fix itself on retry
            fatal = "failed loading language" in message.lower()
            raise RecognitionFailed(
                f"Tesseract failed on {path.name}: {message}",
                engine=self.engine,
                image_path=path,
                category="config" if fatal else "recognition",
                fatal=fatal,
            ) from e
        except RuntimeError as e:
            # pytesseract signals a killed subprocess with a bare RuntimeError
            raise RecognitionFailed(
                f"Tesseract timed out on {path.name}: {e}",
                engine=self.engine,
                image_path=path,
                category="timeout",
            ) from e
