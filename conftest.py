"""
Pytest configuration for project root.

Ensures project modules can be imported in tests.
Provides global fixtures for page images and a scratch library.
"""

import sys
import pytest
from pathlib import Path
from PIL import Image, ImageDraw

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def tmp_library(tmp_path):
    """Create a temporary storage root."""
    library_root = tmp_path / "library"
    library_root.mkdir()
    return library_root


@pytest.fixture
def make_page_image(tmp_path):
    """Factory for small page images on disk: make_page_image(name, size=(w, h))."""
    pages_dir = tmp_path / "pages"
    pages_dir.mkdir(exist_ok=True)

    def _make(name: str = "page_0001.png", size=(200, 300)) -> Path:
        path = pages_dir / name
        img = Image.new("RGB", size, color="white")
        draw = ImageDraw.Draw(img)
        draw.rectangle([10, 10, size[0] - 10, 30], outline="black")
        img.save(path)
        return path

    return _make


@pytest.fixture
def page_images(make_page_image):
    """Three consecutive page images."""
    return [make_page_image(f"page_{i:04d}.png") for i in range(1, 4)]
