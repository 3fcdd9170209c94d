"""
Invisible text layer for searchable page images.

The page image is the visible content; recognized text is drawn on top in
PDF text render mode 3 (neither fill nor stroke). Viewers show nothing,
but search, selection and copy see the text.

Two placements, chosen by what the recognizer produced:

GEOMETRIC (chunk.words present):
    Every word is drawn at its own bounding box. Font size tracks box
    height (word_height_ratio x height, clamped), the baseline sits on the
    box bottom lifted by the font descent, and horizontal scaling stretches
    the word to the box width. Selection highlights the real word.

BLOCK (plain text only):
    The page text is flowed from the top-left margin. The font starts at
    the size that fits target_chars_per_line across the page and shrinks
    until the wrapped block fits inside the vertical margins.

Coordinates: recognizer boxes are image pixels with a top-left origin;
reportlab pages use points with a bottom-left origin.

Fonts: the standard Type1 fonts only encode WinAnsi. Pages with other
scripts switch to a registered Unicode font (a configured TTF, else a
UnicodeCIDFont) so the text stays searchable.
"""

import logging
import textwrap
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.pdfbase.ttfonts import TTFont

from infra.config.schemas import PlacementConfig
from infra.ocr.schemas import ContentChunk, RecognizedWord

logger = logging.getLogger(__name__)

INVISIBLE = 3

MIN_HORIZ_SCALE = 25.0
MAX_HORIZ_SCALE = 400.0

BISECTION_STEPS = 40

WINANSI = "cp1252"


class PlacementMode(str, Enum):
    GEOMETRIC = "geometric"
    BLOCK = "block"
    EMPTY = "empty"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def is_winansi(text: str) -> bool:
    try:
        text.encode(WINANSI)
    except UnicodeEncodeError:
        return False
    return True


def register_unicode_font(config: PlacementConfig) -> str:
    """Register (once) the font used for text outside WinAnsi and return its name."""
    registered = pdfmetrics.getRegisteredFontNames()

    if config.unicode_font_path:
        path = Path(config.unicode_font_path).expanduser()
        name = path.stem
        if name not in registered:
            pdfmetrics.registerFont(TTFont(name, str(path)))
        return name

    if config.cid_font not in registered:
        pdfmetrics.registerFont(UnicodeCIDFont(config.cid_font))
    return config.cid_font


def wrap_block(text: str, font_size: float, available_width: float, config: PlacementConfig) -> List[str]:
    """Split text into lines of at most as many characters as fit across available_width."""
    chars_per_line = max(1, int(available_width // (font_size * config.char_width_factor)))

    lines = []
    for paragraph in text.splitlines():
        if not paragraph.strip():
            lines.append("")
            continue
        lines.extend(textwrap.wrap(
            paragraph,
            width=chars_per_line,
            break_long_words=True,
            break_on_hyphens=True,
        ))

    while lines and not lines[-1]:
        lines.pop()
    return lines


def estimate_block_height(text: str, font_size: float, page_width: float, config: PlacementConfig) -> float:
    available_width = page_width - 2 * config.margin
    lines = wrap_block(text, font_size, available_width, config)
    return len(lines) * font_size * config.line_height_factor


def block_font_size(text: str, page_width: float, page_height: float, config: PlacementConfig) -> float:
    """
    Font size for block placement.

    Starts from the width-derived size clamped to [min_block_font,
    max_block_font]. When the wrapped block would overflow the vertical
    margins, bisects down to the largest size that fits, even below
    min_block_font.
    """
    available_width = page_width - 2 * config.margin
    available_height = page_height - 2 * config.margin

    font_size = available_width / (config.target_chars_per_line * config.char_width_factor)
    font_size = _clamp(font_size, config.min_block_font, config.max_block_font)

    if not text.strip() or available_width <= 0 or available_height <= 0:
        return font_size

    def fits(size: float) -> bool:
        return estimate_block_height(text, size, page_width, config) <= available_height

    if fits(font_size):
        return font_size

    # Height is monotonic in font size: fewer, shorter lines as the font shrinks
    low, high = 0.0, font_size
    for _ in range(BISECTION_STEPS):
        mid = (low + high) / 2
        if fits(mid):
            low = mid
        else:
            high = mid

    if low == 0.0:
        logger.warning(f"Text block ({len(text)} chars) cannot fit the page at any font size")
        return high
    return low


class TextLayerWriter:
    def __init__(self, config: Optional[PlacementConfig] = None):
        self.config = config or PlacementConfig()
        self._unicode_font: Optional[str] = None

    def font_for(self, text: str) -> str:
        if is_winansi(text):
            return self.config.font_name
        if self._unicode_font is None:
            self._unicode_font = register_unicode_font(self.config)
            logger.info(f"Text outside WinAnsi, using {self._unicode_font} for the text layer")
        return self._unicode_font

    def apply(
        self,
        canvas,
        chunk: ContentChunk,
        page_width: float,
        page_height: float,
        image_size: Optional[Tuple[int, int]] = None,
    ) -> PlacementMode:
        """
        Draw chunk's text invisibly onto the current canvas page.

        image_size is the (width, height) in pixels the word boxes refer to;
        when omitted, boxes are taken to be in page units already.
        """
        if chunk.has_geometry:
            scale_x, scale_y = 1.0, 1.0
            if image_size:
                scale_x = page_width / image_size[0]
                scale_y = page_height / image_size[1]
            self.draw_words(canvas, chunk.words, page_height, scale_x, scale_y)
            return PlacementMode.GEOMETRIC

        if chunk.text.strip():
            self.draw_block(canvas, chunk.text, page_width, page_height)
            return PlacementMode.BLOCK

        return PlacementMode.EMPTY

    def word_font_size(self, box_height: float) -> float:
        cfg = self.config
        return _clamp(cfg.word_height_ratio * box_height, cfg.min_word_font, cfg.max_word_font)

    def draw_words(
        self,
        canvas,
        words: List[RecognizedWord],
        page_height: float,
        scale_x: float = 1.0,
        scale_y: float = 1.0,
    ) -> None:
        font_name = self.font_for("".join(word.text for word in words))

        text_obj = canvas.beginText()
        text_obj.setTextRenderMode(INVISIBLE)

        for word in words:
            box = word.bbox
            box_width = box.width * scale_x
            box_height = box.height * scale_y

            font_size = self.word_font_size(box_height)
            descent = pdfmetrics.getDescent(font_name, font_size)

            # Box bottom in PDF space, raised so descenders stay inside the box
            x = box.x0 * scale_x
            baseline = page_height - box.y1 * scale_y - descent

            horiz_scale = 100.0
            advance = pdfmetrics.stringWidth(word.text, font_name, font_size)
            if advance > 0:
                horiz_scale = _clamp(box_width / advance * 100.0, MIN_HORIZ_SCALE, MAX_HORIZ_SCALE)

            text_obj.setFont(font_name, font_size)
            text_obj.setHorizScale(horiz_scale)
            text_obj.setTextOrigin(x, baseline)
            text_obj.textOut(word.text)

        canvas.drawText(text_obj)

    def draw_block(self, canvas, text: str, page_width: float, page_height: float) -> float:
        cfg = self.config
        font_size = block_font_size(text, page_width, page_height, cfg)
        lines = wrap_block(text, font_size, page_width - 2 * cfg.margin, cfg)

        text_obj = canvas.beginText()
        text_obj.setTextRenderMode(INVISIBLE)
        text_obj.setFont(self.font_for(text), font_size, leading=font_size * cfg.line_height_factor)
        text_obj.setTextOrigin(cfg.margin, page_height - cfg.margin - font_size)
        for line in lines:
            text_obj.textLine(line)
        canvas.drawText(text_obj)

        logger.debug(f"Block layer: {len(lines)} lines at {font_size:.2f}pt")
        return font_size
