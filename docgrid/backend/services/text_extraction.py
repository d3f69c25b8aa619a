"""
Multi-method text extraction for PDF and unknown content.

Handles:
- Layout-aware text extraction (pdfplumber)
- Plain text extraction (pypdf)
- OCR over rendered pages (pdf2image + pytesseract), bounded to the first pages
- A single dispatcher loop that records every attempt
"""

import io
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from ..config import Settings, get_settings
from .exceptions import UnusableContentError
from .pdf_service import PDFService, get_pdf_service

logger = logging.getLogger(__name__)

# OCR pages with less text than this are treated as blank
MIN_OCR_PAGE_CHARS = 20


@dataclass(frozen=True)
class TextExtractionStrategy:
    """A named `bytes -> text` extraction function."""

    name: str
    extract: Callable[[bytes], str]


@dataclass
class StrategyAttempt:
    """Outcome of one strategy run."""

    name: str
    succeeded: bool
    characters: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "succeeded": self.succeeded,
            "characters": self.characters,
            "error": self.error,
        }


@dataclass
class TextExtractionResult:
    """Text produced by the first successful strategy, plus the attempt log."""

    text: str
    method: str
    attempts: list[StrategyAttempt] = field(default_factory=list)


# =============================================================================
# Strategies
# =============================================================================


def extract_layout_text(pdf_bytes: bytes, max_pages: int = 20) -> str:
    """Extract layout-preserving text from the first `max_pages` pages."""
    import pdfplumber

    parts: list[str] = []
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        for page in pdf.pages[:max_pages]:
            text = page.extract_text(layout=True) or ""
            if text.strip():
                parts.append(text)
    return "\n\n".join(parts)


def extract_simple_text(pdf_bytes: bytes) -> str:
    """Extract plain text from every page with pypdf."""
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(pdf_bytes))
    parts = [page.extract_text() or "" for page in reader.pages]
    return "\n".join(part for part in parts if part.strip())


def extract_ocr_text(
    pdf_bytes: bytes,
    max_pages: int = 3,
    language: str = "eng",
    pdf_service: PDFService | None = None,
) -> str:
    """
    Render the first `max_pages` pages and run Tesseract over each.

    Pages yielding almost no text are dropped.
    """
    import pytesseract

    service = pdf_service or get_pdf_service()
    images = service.convert_pdf_to_images(pdf_bytes, first_page=1, last_page=max_pages)

    parts: list[str] = []
    for page_number, image in enumerate(images, start=1):
        text = pytesseract.image_to_string(image, lang=language)
        if len(text.strip()) > MIN_OCR_PAGE_CHARS:
            parts.append(text.strip())
        else:
            logger.debug("OCR page %d yielded no usable text", page_number)
    return "\n\n".join(parts)


def default_strategies(settings: Settings | None = None) -> list[TextExtractionStrategy]:
    """The fixed strategy order: layout, then simple, then OCR."""
    settings = settings or get_settings()
    return [
        TextExtractionStrategy(
            "layout",
            partial(extract_layout_text, max_pages=settings.layout_max_pages),
        ),
        TextExtractionStrategy("simple", extract_simple_text),
        TextExtractionStrategy(
            "ocr",
            partial(
                extract_ocr_text,
                max_pages=settings.ocr_max_pages,
                language=settings.ocr_language,
            ),
        ),
    ]


# =============================================================================
# Dispatcher
# =============================================================================


class TextExtractor:
    """
    Runs an ordered list of strategies until one yields enough text.

    A strategy succeeds only if its stripped output reaches `min_text_length`
    characters. Exceptions from a strategy are logged and the next strategy
    runs. The order never changes.
    """

    def __init__(
        self,
        strategies: Sequence[TextExtractionStrategy] | None = None,
        min_text_length: int | None = None,
    ):
        if min_text_length is None:
            min_text_length = get_settings().min_text_length
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.min_text_length = min_text_length

    def extract(self, content: bytes) -> TextExtractionResult:
        """
        Extract text from `content`.

        Args:
            content: Raw document bytes.

        Returns:
            TextExtractionResult naming the strategy that succeeded.

        Raises:
            UnusableContentError: If every strategy failed or fell short.
        """
        attempts: list[StrategyAttempt] = []

        for strategy in self.strategies:
            try:
                text = (strategy.extract(content) or "").strip()
            except Exception as e:
                logger.warning("Text strategy '%s' failed: %s", strategy.name, e)
                attempts.append(StrategyAttempt(strategy.name, False, error=str(e) or type(e).__name__))
                continue

            if len(text) < self.min_text_length:
                logger.info(
                    "Text strategy '%s' produced %d chars (< %d), trying next",
                    strategy.name,
                    len(text),
                    self.min_text_length,
                )
                attempts.append(
                    StrategyAttempt(
                        strategy.name,
                        False,
                        characters=len(text),
                        error="insufficient text",
                    )
                )
                continue

            attempts.append(StrategyAttempt(strategy.name, True, characters=len(text)))
            logger.info("Text extracted via '%s' (%d chars)", strategy.name, len(text))
            return TextExtractionResult(text=text, method=strategy.name, attempts=attempts)

        attempted = [a.name for a in attempts]
        raise UnusableContentError(
            f"No text extraction method produced at least {self.min_text_length} "
            f"characters (tried: {', '.join(attempted) or 'none'})",
            attempted=attempted,
            attempts=[a.to_dict() for a in attempts],
        )


# Singleton instance for convenience
_text_extractor: TextExtractor | None = None


def get_text_extractor() -> TextExtractor:
    """Get or create the text extractor singleton."""
    global _text_extractor
    if _text_extractor is None:
        _text_extractor = TextExtractor()
    return _text_extractor
