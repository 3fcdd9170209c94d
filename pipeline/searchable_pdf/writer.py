import logging
from pathlib import Path
from typing import List, Optional, Tuple

from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from infra.config.schemas import PlacementConfig
from infra.ocr.images import image_size
from infra.ocr.schemas import ContentChunk

from .text_layer import PlacementMode, TextLayerWriter

logger = logging.getLogger(__name__)


class SearchablePdfWriter:
    """
    One PDF page per chunk: the page image, sized to its pixels, with the
    recognized text laid invisibly on top.
    """

    def __init__(self, placement: Optional[PlacementConfig] = None, page_compression: bool = True):
        self.text_layer = TextLayerWriter(placement)
        self.page_compression = page_compression

    def write(
        self,
        chunks: List[ContentChunk],
        output_path,
        title: Optional[str] = None,
        author: Optional[str] = None,
    ) -> Tuple[Path, int]:
        if not chunks:
            raise ValueError("No pages to write")

        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_pdf = output_path.with_suffix(output_path.suffix + ".tmp")

        ordered = sorted(chunks, key=lambda c: c.index)
        modes = {mode: 0 for mode in PlacementMode}

        c = canvas.Canvas(str(tmp_pdf), pageCompression=1 if self.page_compression else 0)
        if title:
            c.setTitle(title)
        if author:
            c.setAuthor(author)
        c.setCreator("folio")

        try:
            for chunk in ordered:
                width, height = image_size(chunk.image)
                c.setPageSize((width, height))
                c.drawImage(
                    ImageReader(str(chunk.image)),
                    0,
                    0,
                    width=width,
                    height=height,
                    preserveAspectRatio=False,
                    mask="auto",
                )
                mode = self.text_layer.apply(c, chunk, width, height, image_size=(width, height))
                modes[mode] += 1
                c.showPage()
            c.save()
            tmp_pdf.replace(output_path)
        except Exception:
            if tmp_pdf.exists():
                tmp_pdf.unlink()
            raise

        logger.info(
            f"Wrote {output_path.name}: {len(ordered)} pages "
            f"({modes[PlacementMode.GEOMETRIC]} geometric, {modes[PlacementMode.BLOCK]} block, "
            f"{modes[PlacementMode.EMPTY]} without text)"
        )
        return output_path, len(ordered)
