"""
Content-kind routing for uploaded documents.

Pure classification by declared MIME type and file extension; no bytes
are inspected.
"""

from enum import Enum

from .exceptions import UnsupportedContentKindError


class ContentKind(str, Enum):
    """Processing path a document is routed to."""

    IMAGE = "image"
    PDF = "pdf"
    UNKNOWN = "unknown"


IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp", "tif", "tiff"})

# Provenance version tagged onto values produced through each path
PROVENANCE_VERSIONS = {
    ContentKind.IMAGE: "vision-api-v1",
    ContentKind.PDF: "text-extraction-v1",
    ContentKind.UNKNOWN: "unknown-fallback-v1",
}


def normalize_extension(extension: str | None, filename: str | None = None) -> str:
    """
    Lower-case an extension and strip any leading dot.

    Falls back to the suffix of `filename` when no extension is given.
    """
    if not extension and filename and "." in filename:
        extension = filename.rsplit(".", 1)[-1]
    return (extension or "").strip().lstrip(".").lower()


def classify_content(mime_type: str | None, extension: str | None) -> ContentKind:
    """
    Classify a document into a processing path.

    Args:
        mime_type: Declared MIME type, possibly empty.
        extension: File extension with or without the leading dot.

    Returns:
        ContentKind.PDF when either hint mentions pdf, ContentKind.IMAGE for
        image MIME types or known image extensions, else ContentKind.UNKNOWN.
    """
    mime = (mime_type or "").strip().lower()
    ext = normalize_extension(extension)

    if "pdf" in mime or "pdf" in ext:
        return ContentKind.PDF
    if mime.startswith("image/") or ext in IMAGE_EXTENSIONS:
        return ContentKind.IMAGE
    return ContentKind.UNKNOWN


def ensure_supported(kind: ContentKind, mime_type: str | None, extension: str | None) -> None:
    """
    Raise UnsupportedContentKindError for content that could not be classified.

    Callers route such content through the best-effort path instead of
    rejecting it.
    """
    if kind == ContentKind.UNKNOWN:
        raise UnsupportedContentKindError(
            f"Unrecognized content (mime={mime_type!r}, ext={extension!r})"
        )


def provenance_version(kind: ContentKind) -> str:
    """Provenance version string for values produced through `kind`."""
    return PROVENANCE_VERSIONS[kind]
