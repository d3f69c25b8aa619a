"""
Shared exceptions for the extraction pipeline services.

Every error carries a stable `code`; documents that fail store
`{message, code}` from the raised error.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes stored on failed documents and returned by the API."""

    TRANSIENT_NETWORK_ERROR = "TRANSIENT_NETWORK_ERROR"
    CONTENT_UNAVAILABLE = "CONTENT_UNAVAILABLE"
    UNUSABLE_CONTENT = "UNUSABLE_CONTENT"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    ALREADY_PROCESSING = "ALREADY_PROCESSING"
    UNSUPPORTED_CONTENT_KIND = "UNSUPPORTED_CONTENT_KIND"
    PROCESSING_ERROR = "PROCESSING_ERROR"
    PDF_CONVERSION_ERROR = "PDF_CONVERSION_ERROR"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    COLLECTION_NOT_FOUND = "COLLECTION_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    COLUMN_IN_USE = "COLUMN_IN_USE"
    COLUMN_EXISTS = "COLUMN_EXISTS"
    INVALID_COLLECTION_MEMBER = "INVALID_COLLECTION_MEMBER"


class PipelineError(Exception):
    """Base class for extraction pipeline errors."""

    code: ErrorCode = ErrorCode.PROCESSING_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict[str, Any]:
        """Structured `{message, code}` stored on failed documents."""
        return {"message": self.message, "code": self.code.value}


class TransientNetworkError(PipelineError):
    """Content fetch or AI call timed out or the peer was unreachable."""

    code = ErrorCode.TRANSIENT_NETWORK_ERROR


class ContentUnavailableError(TransientNetworkError):
    """Raised when a content locator answers non-2xx or cannot be reached."""

    code = ErrorCode.CONTENT_UNAVAILABLE


class UnusableContentError(PipelineError):
    """Raised when every text-extraction strategy fell short."""

    code = ErrorCode.UNUSABLE_CONTENT

    def __init__(
        self,
        message: str,
        attempted: list[str] | None = None,
        attempts: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message)
        self.attempted = list(attempted or [])
        self.attempts = list(attempts or [])

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["attempted"] = self.attempted
        return payload


class MalformedResponseError(PipelineError):
    """Raised when the AI response does not match the extraction contract."""

    code = ErrorCode.MALFORMED_RESPONSE


class AIServiceError(PipelineError):
    """Raised when AI service operations fail."""

    code = ErrorCode.AI_SERVICE_ERROR


class AlreadyProcessingError(PipelineError):
    """Raised when a document is already in processing."""

    code = ErrorCode.ALREADY_PROCESSING


class UnsupportedContentKindError(PipelineError):
    """Content kind could not be classified; handled by the best-effort path."""

    code = ErrorCode.UNSUPPORTED_CONTENT_KIND


class PDFConversionError(PipelineError):
    """Raised when PDF conversion fails."""

    code = ErrorCode.PDF_CONVERSION_ERROR


class NotFoundError(PipelineError):
    """Base class for missing entities."""


class ProjectNotFoundError(NotFoundError):
    code = ErrorCode.PROJECT_NOT_FOUND


class DocumentNotFoundError(NotFoundError):
    code = ErrorCode.DOCUMENT_NOT_FOUND


class CollectionNotFoundError(NotFoundError):
    code = ErrorCode.COLLECTION_NOT_FOUND


class ColumnNotFoundError(NotFoundError):
    code = ErrorCode.COLUMN_NOT_FOUND


class ColumnInUseError(PipelineError):
    """Raised when changing the type of a column that already has values."""

    code = ErrorCode.COLUMN_IN_USE


class InvalidCollectionMemberError(PipelineError):
    """Raised when a document cannot join or be arranged within a collection."""

    code = ErrorCode.INVALID_COLLECTION_MEMBER


class ColumnExistsError(PipelineError):
    """Raised when adding a column whose id is already taken."""

    code = ErrorCode.COLUMN_EXISTS
