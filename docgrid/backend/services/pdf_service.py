"""
PDF and image helpers using pdf2image (poppler) and Pillow.

Handles rendering of PDF pages for OCR and encoding of visual content
for the AI completion request.
"""

import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

from .exceptions import PDFConversionError

logger = logging.getLogger(__name__)

# Longest side sent to the vision model
MAX_IMAGE_SIZE = 2048


class PDFService:
    """
    Service for PDF rendering and image encoding.

    Uses pdf2image (backed by poppler) to convert PDF pages to images.
    """

    def __init__(self, dpi: int = 200, image_format: str = "PNG"):
        """
        Initialize the PDF service.

        Args:
            dpi: Resolution for PDF to image conversion. Higher = better OCR but slower.
            image_format: Output image format (PNG recommended for quality).
        """
        self.dpi = dpi
        self.image_format = image_format

    def convert_pdf_to_images(
        self,
        pdf_bytes: bytes,
        first_page: int | None = None,
        last_page: int | None = None,
    ) -> list[Image.Image]:
        """
        Convert PDF pages to PIL Images.

        Args:
            pdf_bytes: PDF file content.
            first_page: First page to convert (1-indexed, inclusive). None for first page.
            last_page: Last page to convert (1-indexed, inclusive). None for last page.

        Returns:
            List of PIL Image objects, one per page.

        Raises:
            PDFConversionError: If conversion fails for any reason.
        """
        from pdf2image import convert_from_bytes
        from pdf2image.exceptions import (
            PDFInfoNotInstalledError,
            PDFPageCountError,
            PDFSyntaxError,
        )

        if not pdf_bytes:
            raise PDFConversionError("Empty PDF file provided")

        # Validate PDF magic bytes
        if not pdf_bytes[:4] == b"%PDF":
            raise PDFConversionError(
                "Invalid PDF file: does not start with PDF header"
            )

        try:
            logger.info(
                "Converting PDF to images (dpi=%d, pages=%s-%s)",
                self.dpi,
                first_page or "first",
                last_page or "last",
            )

            images = convert_from_bytes(
                pdf_bytes,
                dpi=self.dpi,
                fmt=self.image_format.lower(),
                first_page=first_page,
                last_page=last_page,
                thread_count=2,
            )

            logger.info("Successfully converted %d page(s)", len(images))
            return images

        except PDFInfoNotInstalledError as e:
            logger.error("Poppler not installed: %s", e)
            raise PDFConversionError(
                "Poppler not installed. Install poppler-utils: "
                "brew install poppler (macOS) or apt-get install poppler-utils (Linux)"
            ) from e

        except PDFPageCountError as e:
            logger.error("Could not get PDF page count: %s", e)
            raise PDFConversionError(
                f"Could not determine PDF page count: {e}"
            ) from e

        except PDFSyntaxError as e:
            logger.error("PDF syntax error: %s", e)
            raise PDFConversionError(f"Invalid or corrupted PDF file: {e}") from e

        except Exception as e:
            logger.exception("Unexpected error during PDF conversion")
            raise PDFConversionError(f"PDF conversion failed: {e}") from e

    def load_image(self, data: bytes) -> Image.Image | None:
        """
        Decode raw bytes into a PIL Image.

        Returns:
            The image, or None when the bytes are not a format Pillow knows.
        """
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
            return image
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.info("Content is not a decodable image: %s", e)
            return None

    def image_to_base64(self, image: Image.Image) -> str:
        """Convert PIL Image to a base64 PNG string for the API."""
        buffer = io.BytesIO()
        # Resize if too large (max 2048px on longest side for efficiency)
        if max(image.size) > MAX_IMAGE_SIZE:
            ratio = MAX_IMAGE_SIZE / max(image.size)
            new_size = (int(image.size[0] * ratio), int(image.size[1] * ratio))
            image = image.resize(new_size, Image.Resampling.LANCZOS)
        if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
            image = image.convert("RGB")

        image.save(buffer, format="PNG", optimize=True)
        buffer.seek(0)
        return base64.b64encode(buffer.getvalue()).decode("utf-8")

    def image_data_url(self, data: bytes) -> str | None:
        """
        Build a `data:image/png;base64,...` URL from raw image bytes.

        Returns:
            The data URL, or None when the bytes cannot be decoded.
        """
        image = self.load_image(data)
        if image is None:
            return None
        return f"data:image/png;base64,{self.image_to_base64(image)}"


# Singleton instance for convenience
_pdf_service: PDFService | None = None


def get_pdf_service() -> PDFService:
    """Get or create the PDF service singleton."""
    global _pdf_service
    if _pdf_service is None:
        from ..config import get_settings

        _pdf_service = PDFService(dpi=get_settings().ocr_dpi)
    return _pdf_service
