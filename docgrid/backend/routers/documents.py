"""
Router for document-related endpoints.

Handles:
- Registering uploaded documents (optionally auto-processing them)
- Starting, re-running and cancelling processing
- Bulk processing of a project's pending documents
- Reading and manually writing extracted values
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import (
    DocumentCreateRequest,
    DocumentResponse,
    ExtractedValue,
    ExtractedValueWriteRequest,
    ProcessingState,
    ProcessingTrigger,
    ProcessPendingResponse,
)
from ..models_db import Document
from ..services import documents as document_service
from ..services.processing import DocumentProcessor, get_document_processor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["documents"])
# Project-scoped routes (registration, listing, bulk processing)
project_router = APIRouter(prefix="/projects/{project_id}/documents", tags=["documents"])


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        project_id=document.project_id,
        original_name=document.original_name,
        mime_type=document.mime_type,
        extension=document.extension,
        size=document.file_size_bytes,
        content_url=document.content_url,
        processing=document_service.document_state(document),
        retry_count=document.retry_count,
        started_at=document.started_at.isoformat() if document.started_at else None,
        completed_at=document.completed_at.isoformat() if document.completed_at else None,
        extracted_data={
            k: ExtractedValue.model_validate(v) for k, v in (document.extracted_data or {}).items()
        },
        created_at=document.created_at.isoformat(),
    )


# =============================================================================
# Project-scoped Endpoints
# =============================================================================


@project_router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def register_document(
    project_id: str,
    request: DocumentCreateRequest,
    db: Session = Depends(get_db),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> DocumentResponse:
    """
    Register an uploaded document in `pending` state.

    With `auto_process` the document immediately enters processing with the
    upload-auto trigger.
    """
    document = document_service.register_document(
        db,
        project_id,
        original_name=request.original_name,
        content_url=request.content_url,
        mime_type=request.mime_type,
        extension=request.extension,
        size=request.size,
    )
    if request.auto_process:
        await processor.start_processing(document.id, ProcessingTrigger.UPLOAD_AUTO)
        db.refresh(document)
    return _document_response(document)


@project_router.get("", response_model=list[DocumentResponse])
async def list_documents(
    project_id: str,
    db: Session = Depends(get_db),
) -> list[DocumentResponse]:
    return [_document_response(d) for d in document_service.list_documents(db, project_id)]


@project_router.post(
    "/process-pending",
    response_model=ProcessPendingResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_pending_documents(
    project_id: str,
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ProcessPendingResponse:
    """Start every pending document of the project, staggered."""
    outcome = await processor.process_pending(project_id)
    return ProcessPendingResponse(
        project_id=project_id,
        scheduled=outcome.scheduled,
        skipped=outcome.skipped,
    )


# =============================================================================
# Document Endpoints
# =============================================================================


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    db: Session = Depends(get_db),
) -> DocumentResponse:
    return _document_response(document_service.get_document(db, document_id))


@router.post(
    "/{document_id}/process",
    response_model=ProcessingState,
    status_code=status.HTTP_202_ACCEPTED,
)
async def process_document(
    document_id: str,
    wait: bool = Query(default=False, description="Block until processing finishes"),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ProcessingState:
    """
    Start processing a document.

    Returns 409 when the document is already processing.

    Args:
        document_id: Document to process.
        wait: Return the terminal state instead of the initial one.
        processor: Document processor.

    Returns:
        Processing state (`processing`/0, or the terminal state with `wait`).
    """
    state = await processor.start_processing(document_id, ProcessingTrigger.MANUAL)
    if wait:
        return await processor.wait(document_id)
    return state


@router.post(
    "/{document_id}/reprocess",
    response_model=ProcessingState,
    status_code=status.HTTP_202_ACCEPTED,
)
async def reprocess_document(
    document_id: str,
    wait: bool = Query(default=False),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ProcessingState:
    """Re-run processing; a document already processing keeps its current run."""
    state = await processor.reprocess(document_id)
    if wait:
        return await processor.wait(document_id)
    return state


@router.post("/{document_id}/cancel")
async def cancel_scheduled_processing(
    document_id: str,
    db: Session = Depends(get_db),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> dict:
    """Cancel a scheduled start. Runs already in progress are not interrupted."""
    document_service.get_document(db, document_id)
    return {"document_id": document_id, "cancelled": processor.cancel_scheduled(document_id)}


@router.get("/{document_id}/values/{column_id}", response_model=ExtractedValue)
async def get_extracted_value(
    document_id: str,
    column_id: str,
    db: Session = Depends(get_db),
) -> ExtractedValue:
    value = document_service.get_extracted_value(db, document_id, column_id)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No value for column {column_id} on document {document_id}",
        )
    return value


@router.put("/{document_id}/values/{column_id}", response_model=ExtractedValue)
async def set_extracted_value(
    document_id: str,
    column_id: str,
    request: ExtractedValueWriteRequest,
    db: Session = Depends(get_db),
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ExtractedValue:
    """Write a value by hand (manual provenance)."""
    return document_service.set_extracted_value(
        db,
        document_id,
        column_id,
        value=request.value,
        status=request.status,
        confidence=request.confidence,
        audit_sink=processor.audit_sink,
    )
