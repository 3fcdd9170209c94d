"""
Word-geometry markup parsing.

Turns per-word markup into RecognizedWord records. Two shapes are accepted:

    Tesseract hOCR:
        <span class='ocrx_word' title='bbox 54 10 129 29; x_wconf 96'>Courage</span>

    Simplified word markup:
        <word bbox="10 10 50 30" conf="91">Hello</word>

Parsing never raises on bad entries: a word without a well-formed,
non-degenerate box (or without text) is dropped.
"""

import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup
from pydantic import ValidationError

from .schemas import BoundingBox, GeometryResult, RecognizedWord, words_to_text

BBOX_RE = re.compile(r"\bbbox\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)\s+(-?\d+)\b")
WCONF_RE = re.compile(r"\bx_wconf\s+(-?\d+(?:\.\d+)?)\b")


def _parse_box(tag) -> Optional[Tuple[int, int, int, int]]:
    raw = tag.get("bbox")
    if raw is not None:
        parts = str(raw).split()
        if len(parts) != 4:
            return None
        try:
            return tuple(int(p) for p in parts)
        except ValueError:
            return None

    match = BBOX_RE.search(tag.get("title") or "")
    if not match:
        return None
    return tuple(int(v) for v in match.groups())


def _parse_confidence(tag) -> Optional[float]:
    match = WCONF_RE.search(tag.get("title") or "")
    raw = match.group(1) if match else tag.get("conf", tag.get("confidence"))
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    # hOCR reports 0-100; anything already in 0-1 is taken as-is
    if value > 1.0:
        value = value / 100.0
    if value < 0.0 or value > 1.0:
        return None
    return round(value, 3)


def _is_word_element(tag) -> bool:
    if tag.name == "word":
        return True
    classes = tag.get("class") or []
    return "ocrx_word" in classes


def parse_word_geometry(markup) -> List[RecognizedWord]:
    if isinstance(markup, bytes):
        markup = markup.decode("utf-8", errors="replace")
    if not markup or not markup.strip():
        return []

    soup = BeautifulSoup(markup, "html.parser")

    words = []
    for tag in soup.find_all(_is_word_element):
        text = tag.get_text(" ", strip=True)
        if not text:
            continue

        box = _parse_box(tag)
        if box is None:
            continue

        try:
            words.append(RecognizedWord(
                text=text,
                bbox=BoundingBox.from_list(list(box)),
                confidence=_parse_confidence(tag),
            ))
        except ValidationError:
            continue

    return words


def parse_geometry_result(markup) -> GeometryResult:
    words = parse_word_geometry(markup)
    return GeometryResult(text=words_to_text(words), words=words)
