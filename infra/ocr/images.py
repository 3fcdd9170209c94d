import base64
import io
from pathlib import Path
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from .errors import InvalidInput


def load_image(path: Path, engine: str = None) -> Image.Image:
    try:
        with Image.open(path) as img:
            img.load()
            return img.copy()
    except FileNotFoundError:
        raise InvalidInput(f"Image file not found: {path}", engine=engine, image_path=path)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInput(f"Invalid image {path}: {e}", engine=engine, image_path=path) from e


def downscale(image: Image.Image, max_dimension: int) -> Image.Image:
    if image.width > max_dimension or image.height > max_dimension:
        scale = max_dimension / max(image.width, image.height)
        new_width = int(image.width * scale)
        new_height = int(image.height * scale)
        image = image.resize((new_width, new_height), Image.Resampling.LANCZOS)
    return image


def image_to_base64(image: Image.Image) -> str:
    if image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    buffer.seek(0)
    return base64.b64encode(buffer.read()).decode("utf-8")


def encode_page_image(path: Path, max_dimension: int, engine: str = None) -> Tuple[str, str]:
    """Load, downscale and base64-encode a page image. Returns (mime_type, data)."""
    image = downscale(load_image(path, engine=engine), max_dimension)
    return "image/png", image_to_base64(image)


def image_size(path: Path) -> Tuple[int, int]:
    with Image.open(path) as img:
        return img.size
