"""
Blank Page Detection

Scanners insert filler pages between documents. A page is judged blank
from its OCR text: missing text, the oracle's "[BLANK]" marker, only a
handful of characters (a page number, a stray header), or an explicit
"intentionally blank" notice.

When a page's text is not available at all, an optional pixel check
renders the page and measures how much of it is inked.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import pypdfium2 as pdfium
from PIL import Image

logger = logging.getLogger(__name__)


@dataclass
class BlankPageConfig:
    """Configuration for blank page detection."""

    # Pages with fewer non-whitespace characters than this are blank
    min_text_chars: int = 20

    # Whole-page markers the oracle uses for blank pages (case-insensitive)
    blank_markers: List[str] = field(default_factory=lambda: ["[blank]"])

    # Phrases that mark a page as blank wherever they appear
    blank_phrases: List[str] = field(default_factory=lambda: [
        "[blank page]",
        "intentionally blank",
        "intentionally left blank",
    ])

    # Render pages whose text is unavailable and inspect the pixels
    use_pixel_fallback: bool = False

    # Render scale for the pixel check (1.0 = 72 dpi)
    render_scale: float = 0.5

    # Grayscale level below which a pixel counts as ink (0-255)
    dark_pixel_level: int = 200

    # Pages with a smaller share of ink pixels than this are blank
    ink_ratio_threshold: float = 0.005


def is_blank(page_text: Optional[str], config: Optional[BlankPageConfig] = None) -> bool:
    """
    Judge whether a page is blank from its OCR text.

    Args:
        page_text: Extracted text of the page
        config: Detection thresholds

    Returns:
        True if the page carries no meaningful content
    """
    config = config or BlankPageConfig()

    if not page_text:
        return True

    stripped = page_text.strip().lower()
    if stripped in config.blank_markers:
        return True

    if len(re.sub(r"\s+", "", page_text)) < config.min_text_chars:
        return True

    return any(phrase in stripped for phrase in config.blank_phrases)


def ink_ratio(image: Image.Image, dark_pixel_level: int = 200) -> float:
    """Share of pixels darker than `dark_pixel_level` in a rendered page."""
    gray = image.convert("L")
    histogram = gray.histogram()
    total = gray.width * gray.height
    if total == 0:
        return 0.0
    return sum(histogram[:dark_pixel_level]) / total


def is_image_blank(image: Image.Image, config: Optional[BlankPageConfig] = None) -> bool:
    config = config or BlankPageConfig()
    return ink_ratio(image, config.dark_pixel_level) < config.ink_ratio_threshold


class BlankPageDetector:
    """
    Blank page detector bound to one source PDF.

    The text heuristic is always tried first. The source PDF is only
    opened for rendering when a page has no text and the pixel fallback
    is enabled.
    """

    def __init__(
        self,
        config: Optional[BlankPageConfig] = None,
        source_bytes: Optional[bytes] = None,
    ):
        self.config = config or BlankPageConfig()
        self._source_bytes = source_bytes
        self._pdf: Optional[pdfium.PdfDocument] = None
        self.pages_rendered = 0

    def close(self) -> None:
        if self._pdf is not None:
            self._pdf.close()
            self._pdf = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def is_blank(self, page_text: Optional[str], page_number: Optional[int] = None) -> bool:
        """
        Judge whether a page is blank.

        Args:
            page_text: OCR text, or None when no text is available
            page_number: 1-indexed page in the source, used for rendering

        Returns:
            True if the page should be dropped. A page without text is
            kept unless the pixel check shows it is blank.
        """
        if page_text is not None:
            return is_blank(page_text, self.config)

        if not self.config.use_pixel_fallback or self._source_bytes is None or page_number is None:
            return False

        image = self._render_page(page_number)
        if image is None:
            return False
        return is_image_blank(image, self.config)

    def _render_page(self, page_number: int) -> Optional[Image.Image]:
        try:
            if self._pdf is None:
                self._pdf = pdfium.PdfDocument(io.BytesIO(self._source_bytes))
            page = self._pdf[page_number - 1]
            try:
                bitmap = page.render(scale=self.config.render_scale)
                image = bitmap.to_pil()
            finally:
                page.close()
            self.pages_rendered += 1
            return image
        except Exception as e:
            logger.warning(f"Could not render page {page_number} for blank check, keeping it: {e}")
            return None
