from __future__ import annotations
import asyncio
import io
import logging
from typing import Protocol

from PyPDF2 import PdfReader

from examprep.config import PDF_MAX_PAGES
from examprep.errors import PaperExtractionError

logger = logging.getLogger(__name__)

PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"
LINE_TOLERANCE = 3


class PdfTextExtractor(Protocol):
    async def extract(self, data: bytes) -> str: ...


def reconstruct_lines(fragments: list[tuple[str, float]], tolerance: float = LINE_TOLERANCE) -> list[str]:
    """
    Groups positioned text fragments into lines. A fragment whose rounded
    vertical position moves more than `tolerance` from the previous one
    starts a new line.
    """
    lines: list[str] = []
    current = ""
    last_y: int | None = None
    for text, y in fragments:
        y = round(y)
        if last_y is not None and abs(y - last_y) > tolerance:
            if current.strip():
                lines.append(current.strip())
            current = text
        else:
            sep = " " if current and text and not current.endswith(" ") else ""
            current += sep + text
        last_y = y
    if current.strip():
        lines.append(current.strip())
    return lines


def _fragment_y(cm: list[float], tm: list[float]) -> float:
    # vertical component of tm x cm
    return tm[4] * cm[1] + tm[5] * cm[3] + cm[5]


def _page_text(page) -> str:
    fragments: list[tuple[str, float]] = []

    def visitor(text, cm, tm, font_dict, font_size):
        if text and text.strip():
            fragments.append((text.replace("\n", " "), _fragment_y(cm, tm)))

    plain = page.extract_text(visitor_text=visitor) or ""
    lines = reconstruct_lines(fragments)
    if lines:
        return "\n".join(lines)
    return plain.strip()


def extract_pdf_text(data: bytes, max_pages: int = PDF_MAX_PAGES) -> str:
    reader = PdfReader(io.BytesIO(data))
    pages = [reader.pages[i] for i in range(min(len(reader.pages), max_pages))]
    texts = [_page_text(page) for page in pages]
    text = PAGE_BREAK.join(texts)
    if not text.replace("--- PAGE BREAK ---", "").strip():
        raise PaperExtractionError("Unable to extract text from PDF")
    logger.info("extracted %d chars from %d PDF pages", len(text), len(texts))
    return text


class PyPDF2TextExtractor:
    def __init__(self, max_pages: int = PDF_MAX_PAGES):
        self.max_pages = max_pages

    async def extract(self, data: bytes) -> str:
        return await asyncio.to_thread(extract_pdf_text, data, self.max_pages)
