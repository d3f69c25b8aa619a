"""
Document registration and explicit field writes.
"""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from ..models import (
    ExtractedBy,
    ExtractedValue,
    ExtractionMethod,
    ProcessingErrorInfo,
    ProcessingState,
    ValueStatus,
)
from ..models_db import Document
from . import audit
from .aggregation import reaggregate_for_document
from .audit import AuditSink, record_event
from .columns import get_column, get_project
from .content_router import normalize_extension
from .exceptions import ColumnNotFoundError, DocumentNotFoundError

logger = logging.getLogger(__name__)


def get_document(db: Session, document_id: str) -> Document:
    document = db.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")
    return document


def document_state(document: Document) -> ProcessingState:
    error = None
    if document.error_code:
        error = ProcessingErrorInfo(message=document.error_message or "", code=document.error_code)
    return ProcessingState(status=document.status.value, progress=document.progress, error=error)


def register_document(
    db: Session,
    project_id: str,
    original_name: str,
    content_url: str,
    mime_type: str = "",
    extension: str | None = None,
    size: int | None = None,
) -> Document:
    """Create a `pending` document for an upload stored at `content_url`."""
    get_project(db, project_id)
    document = Document(
        project_id=project_id,
        original_name=original_name,
        content_url=content_url,
        mime_type=mime_type or "",
        extension=normalize_extension(extension, original_name),
        file_size_bytes=size,
        extracted_data={},
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    logger.info("Registered document %s ('%s', %s)", document.id, original_name, mime_type or "no mime")
    return document


def list_documents(db: Session, project_id: str) -> list[Document]:
    get_project(db, project_id)
    return (
        db.query(Document)
        .filter(Document.project_id == project_id)
        .order_by(Document.created_at)
        .all()
    )


def get_extracted_value(db: Session, document_id: str, column_id: str) -> ExtractedValue | None:
    """The stored value of one column, or None when absent."""
    document = get_document(db, document_id)
    raw = (document.extracted_data or {}).get(column_id)
    return ExtractedValue.model_validate(raw) if raw else None


def set_extracted_value(
    db: Session,
    document_id: str,
    column_id: str,
    value: str,
    status: ValueStatus | None = ValueStatus.YES,
    confidence: float = 1.0,
    audit_sink: AuditSink | None = None,
) -> ExtractedValue:
    """
    Write a value by hand.

    The value is tagged with `manual` provenance. Auto-aggregating
    collections holding the document are recomputed.

    Raises:
        DocumentNotFoundError: If the document does not exist.
        ColumnNotFoundError: If the column is unknown or disabled.
    """
    document = get_document(db, document_id)
    column = get_column(db, document.project_id, column_id)
    if not column.extraction_enabled:
        raise ColumnNotFoundError(f"Column {column_id} is disabled")

    previous = (document.extracted_data or {}).get(column_id)
    extracted = ExtractedValue(
        value=value,
        type=column.type,
        status=status,
        confidence=confidence,
        extracted_at=datetime.utcnow(),
        extracted_by=ExtractedBy(method=ExtractionMethod.MANUAL),
    )
    data = dict(document.extracted_data or {})
    data[column_id] = extracted.model_dump(mode="json")
    document.extracted_data = data
    db.commit()

    record_event(
        audit_sink,
        document.id,
        audit.VALUE_UPDATED,
        {
            "columnId": column_id,
            "previousValue": (previous or {}).get("value"),
            "newValue": extracted.value,
        },
    )
    reaggregate_for_document(db, document)
    return extracted
