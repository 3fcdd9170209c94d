from .text_layer import (
    PlacementMode,
    TextLayerWriter,
    block_font_size,
    estimate_block_height,
    wrap_block,
)
from .writer import SearchablePdfWriter

__all__ = [
    "PlacementMode",
    "TextLayerWriter",
    "block_font_size",
    "estimate_block_height",
    "wrap_block",
    "SearchablePdfWriter",
]
