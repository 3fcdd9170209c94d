from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PageImage(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Rasterized page image on disk")
    page: int = Field(..., ge=1, description="Ordinal page number (1-based)")
    index: int = Field(..., ge=0, description="Zero-based position in the capture stream")

    @classmethod
    def from_path(cls, path, page: int) -> "PageImage":
        return cls(path=Path(path), page=page, index=page - 1)


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x0: int = Field(..., description="Left edge (pixels)")
    y0: int = Field(..., description="Top edge (pixels)")
    x1: int = Field(..., description="Right edge (pixels)")
    y1: int = Field(..., description="Bottom edge (pixels)")

    @model_validator(mode="after")
    def check_extent(self):
        if self.x1 <= self.x0 or self.y1 <= self.y0:
            raise ValueError(
                f"Degenerate bounding box ({self.x0}, {self.y0}, {self.x1}, {self.y1})"
            )
        return self

    @classmethod
    def from_list(cls, values: List[int]) -> "BoundingBox":
        if len(values) != 4:
            raise ValueError(f"BoundingBox requires 4 values, got {len(values)}")
        return cls(x0=values[0], y0=values[1], x1=values[2], y1=values[3])

    def to_tuple(self):
        return (self.x0, self.y0, self.x1, self.y1)

    @property
    def width(self) -> int:
        return self.x1 - self.x0

    @property
    def height(self) -> int:
        return self.y1 - self.y0


class RecognizedWord(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1, description="Word text")
    bbox: BoundingBox = Field(..., description="Word bounding box in image pixels")
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0, description="Recognition confidence (0.0-1.0)")


def words_to_text(words: List[RecognizedWord]) -> str:
    return " ".join(w.text for w in words).strip()


class GeometryResult(BaseModel):
    text: str = ""
    words: List[RecognizedWord] = Field(default_factory=list)


class ContentChunk(BaseModel):
    """One recognized page, as handed to the document assembler."""
    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    text: str = Field("", description="Recognized text; empty when recognition failed or was skipped")
    image: Path = Field(..., description="Source page image")
    words: Optional[List[RecognizedWord]] = Field(None, description="Word geometry, geometry-capable backends only")

    @model_validator(mode="before")
    @classmethod
    def fill_text(cls, data):
        if isinstance(data, dict):
            if data.get("text") is None:
                data = {**data, "text": ""}
            words = data.get("words")
            if words and not data["text"]:
                data = {**data, "text": " ".join(
                    w.text if isinstance(w, RecognizedWord) else w["text"] for w in words
                )}
        return data

    @classmethod
    def from_page(cls, page: PageImage, text: str = "", words: Optional[List[RecognizedWord]] = None) -> "ContentChunk":
        return cls(index=page.index, page=page.page, text=text, image=page.path, words=words or None)

    @property
    def has_geometry(self) -> bool:
        return bool(self.words)
