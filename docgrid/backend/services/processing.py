"""
Per-document processing state machine and worker.

Handles:
- Atomic entry into `processing` (compare-and-set on the persisted status)
- Dispatch of runs to tracked asyncio tasks with an awaitable result
- Content routing, text extraction and the single AI extraction call
- Progress, terminal state and audit events for every transition
- Staggered bulk processing of pending documents and cancellation of
  starts that have not begun yet
- Re-aggregation of auto-aggregating collections after each run
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from ..config import get_settings
from ..models import ProcessingState, ProcessingTrigger
from ..models_db import Document, DocumentStatus
from . import audit
from .aggregation import reaggregate_for_document
from .ai import FieldExtractionClient, FieldExtractionResult
from .audit import AuditSink, record_event
from .columns import get_project, list_columns
from .content_router import ContentKind, classify_content, ensure_supported, provenance_version
from .content_source import ContentSource
from .documents import document_state, get_document
from .exceptions import (
    AlreadyProcessingError,
    DocumentNotFoundError,
    ErrorCode,
    PipelineError,
    UnsupportedContentKindError,
    UnusableContentError,
)
from .pdf_service import PDFService, get_pdf_service
from .text_extraction import TextExtractor, get_text_extractor

logger = logging.getLogger(__name__)

# Progress milestones written during a run
PROGRESS_CONTENT_READY = 30
PROGRESS_EXTRACTED = 70
PROGRESS_DONE = 100

VISUAL_METHOD = "vision"


@dataclass
class _RunOutcome:
    """Details collected during a run for the completion audit event."""

    content_kind: ContentKind
    extraction_method: str | None = None
    attempts: list[dict[str, Any]] = field(default_factory=list)
    result: FieldExtractionResult | None = None


@dataclass
class BulkScheduleResult:
    scheduled: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class DocumentProcessor:
    """
    Owns the lifecycle of documents: pending -> processing -> completed | failed.

    Entry into `processing` is a single conditional UPDATE, so two concurrent
    start requests cannot both succeed. Each accepted start becomes an
    asyncio task registered under the document id; `wait()` returns its
    final state.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        content_source: ContentSource,
        extraction_client: FieldExtractionClient,
        text_extractor: TextExtractor | None = None,
        pdf_service: PDFService | None = None,
        audit_sink: AuditSink | None = None,
        stagger_seconds: float | None = None,
        max_concurrent_jobs: int | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.content_source = content_source
        self.extraction_client = extraction_client
        self.text_extractor = text_extractor or get_text_extractor()
        self.pdf_service = pdf_service or get_pdf_service()
        self.audit_sink = audit_sink
        self.stagger_seconds = (
            settings.bulk_stagger_seconds if stagger_seconds is None else stagger_seconds
        )
        # Concurrency limit to avoid AI rate limits
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs or settings.max_concurrent_jobs)
        self._tasks: dict[str, asyncio.Task[ProcessingState]] = {}
        self._pending_starts: dict[str, asyncio.Event] = {}

    # =========================================================================
    # Public API
    # =========================================================================

    async def start_processing(
        self,
        document_id: str,
        trigger: ProcessingTrigger = ProcessingTrigger.MANUAL,
        delay: float = 0.0,
        count_retry: bool = False,
    ) -> ProcessingState:
        """
        Move a document into `processing` and dispatch its run.

        Args:
            document_id: Document to process.
            trigger: What requested the run; recorded in audit events.
            delay: Seconds to wait before the run begins. The document is
                `processing` from the moment this returns.
            count_retry: Increment the document's retry counter.

        Returns:
            The state right after entry: `processing` at progress 0.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            AlreadyProcessingError: If the document is already processing.
        """
        previous = self._enter_processing(document_id, count_retry)

        record_event(
            self.audit_sink,
            document_id,
            audit.PROCESSING_STARTED,
            {"trigger": trigger.value, "previousStatus": previous[0].value},
        )
        logger.info(
            "Processing started for document %s (trigger=%s, previous=%s)",
            document_id,
            trigger.value,
            previous[0].value,
        )

        self._pending_starts[document_id] = asyncio.Event()
        task = asyncio.create_task(
            self._run(document_id, trigger, delay, previous),
            name=f"process-{document_id}",
        )
        self._tasks[document_id] = task
        task.add_done_callback(lambda t: self._forget(document_id, t))
        return ProcessingState(status=DocumentStatus.PROCESSING.value, progress=0)

    async def reprocess(
        self,
        document_id: str,
        trigger: ProcessingTrigger = ProcessingTrigger.MANUAL,
    ) -> ProcessingState:
        """
        Re-enter `processing` from any state.

        Idempotent: a document that is already processing keeps its current
        run and its current state is returned.
        """
        current = self.get_state(document_id)
        if current.status == DocumentStatus.PROCESSING.value:
            logger.info("Reprocess of %s ignored: already processing", document_id)
            return current
        try:
            return await self.start_processing(document_id, trigger, count_retry=True)
        except AlreadyProcessingError:
            return self.get_state(document_id)

    async def wait(self, document_id: str) -> ProcessingState:
        """
        Wait for the document's current run and return its final state.

        Returns the persisted state immediately when no run is active.
        Cancelling the waiter does not cancel the run.
        """
        task = self._tasks.get(document_id)
        if task is not None:
            return await asyncio.shield(task)
        return self.get_state(document_id)

    async def process_document(
        self,
        document_id: str,
        trigger: ProcessingTrigger = ProcessingTrigger.MANUAL,
    ) -> ProcessingState:
        """Start processing and wait for the terminal state."""
        await self.start_processing(document_id, trigger)
        return await self.wait(document_id)

    async def process_pending(self, project_id: str) -> BulkScheduleResult:
        """
        Start every pending document of a project with the bulk trigger.

        Starts are staggered by `stagger_seconds` and run through the
        concurrency semaphore.
        """
        db = self.session_factory()
        try:
            get_project(db, project_id)
            pending_ids = [
                doc_id
                for (doc_id,) in db.query(Document.id)
                .filter(
                    Document.project_id == project_id,
                    Document.status == DocumentStatus.PENDING,
                )
                .order_by(Document.created_at)
            ]
        finally:
            db.close()

        outcome = BulkScheduleResult()
        for index, document_id in enumerate(pending_ids):
            try:
                await self.start_processing(
                    document_id,
                    ProcessingTrigger.BULK,
                    delay=index * self.stagger_seconds,
                )
                outcome.scheduled.append(document_id)
            except AlreadyProcessingError:
                outcome.skipped.append(document_id)

        logger.info(
            "Bulk processing for project %s: %d scheduled, %d skipped",
            project_id,
            len(outcome.scheduled),
            len(outcome.skipped),
        )
        return outcome

    def cancel_scheduled(self, document_id: str) -> bool:
        """
        Prevent a scheduled run that has not begun yet.

        Returns:
            True if the start was cancelled, False if no start was pending
            (runs already in flight are never interrupted).
        """
        event = self._pending_starts.get(document_id)
        if event is None:
            return False
        event.set()
        return True

    def get_state(self, document_id: str) -> ProcessingState:
        db = self.session_factory()
        try:
            return document_state(get_document(db, document_id))
        finally:
            db.close()

    def is_active(self, document_id: str) -> bool:
        return document_id in self._tasks

    async def shutdown(self) -> None:
        """Cancel pending starts and wait for in-flight runs to finish."""
        for event in self._pending_starts.values():
            event.set()
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("Waiting for %d processing run(s) to finish", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # State Transitions
    # =========================================================================

    def _enter_processing(self, document_id: str, count_retry: bool) -> tuple[DocumentStatus, int]:
        """
        Compare-and-set the document into `processing`.

        Returns:
            The (status, progress) seen before entry, for audit and reverts.
        """
        db = self.session_factory()
        try:
            row = (
                db.query(Document.status, Document.progress)
                .filter(Document.id == document_id)
                .first()
            )
            if row is None:
                raise DocumentNotFoundError(f"Document {document_id} not found")

            values: dict[str, Any] = {
                "status": DocumentStatus.PROCESSING,
                "progress": 0,
                "error_message": None,
                "error_code": None,
                "started_at": datetime.utcnow(),
                "completed_at": None,
            }
            if count_retry:
                values["retry_count"] = Document.retry_count + 1

            updated = db.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status != DocumentStatus.PROCESSING,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            ).rowcount
            db.commit()
        finally:
            db.close()

        if updated == 0:
            raise AlreadyProcessingError(f"Document {document_id} is already being processed")
        return row[0], row[1]

    def _forget(self, document_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(document_id) is task:
            del self._tasks[document_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error("Processing task for %s crashed: %s", document_id, task.exception())

    async def _wait_for_start(self, document_id: str, delay: float) -> bool:
        """Sleep out the start delay. False when the start was cancelled meanwhile."""
        event = self._pending_starts[document_id]
        if delay > 0:
            try:
                await asyncio.wait_for(event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        self._pending_starts.pop(document_id, None)
        return not event.is_set()

    def _revert_cancelled(
        self,
        document_id: str,
        trigger: ProcessingTrigger,
        previous: tuple[DocumentStatus, int],
    ) -> ProcessingState:
        db = self.session_factory()
        try:
            db.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status == DocumentStatus.PROCESSING,
                )
                .values(status=previous[0], progress=previous[1], started_at=None)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            state = document_state(get_document(db, document_id))
        finally:
            db.close()

        record_event(
            self.audit_sink,
            document_id,
            audit.PROCESSING_CANCELLED,
            {"trigger": trigger.value, "restoredStatus": previous[0].value},
        )
        logger.info("Scheduled processing of %s cancelled before start", document_id)
        return state

    def _set_progress(self, db: Session, document: Document, progress: int) -> None:
        document.progress = progress
        db.commit()

    def _mark_failed(
        self,
        document_id: str,
        trigger: ProcessingTrigger,
        payload: dict[str, Any],
        elapsed_ms: int,
    ) -> None:
        db = self.session_factory()
        try:
            document = get_document(db, document_id)
            document.status = DocumentStatus.FAILED
            document.progress = PROGRESS_DONE
            document.error_message = payload["message"]
            document.error_code = payload["code"]
            document.completed_at = datetime.utcnow()
            db.commit()
        finally:
            db.close()

        record_event(
            self.audit_sink,
            document_id,
            audit.PROCESSING_FAILED,
            {"trigger": trigger.value, "error": payload, "processingTimeMs": elapsed_ms},
        )

    # =========================================================================
    # Run
    # =========================================================================

    async def _run(
        self,
        document_id: str,
        trigger: ProcessingTrigger,
        delay: float,
        previous: tuple[DocumentStatus, int],
    ) -> ProcessingState:
        if not await self._wait_for_start(document_id, delay):
            return self._revert_cancelled(document_id, trigger, previous)

        async with self._semaphore:
            started = time.monotonic()
            try:
                outcome = await self._execute(document_id)
            except PipelineError as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                logger.warning("Processing failed for %s: [%s] %s", document_id, e.code.value, e)
                self._mark_failed(document_id, trigger, e.to_payload(), elapsed_ms)
            except Exception as e:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                logger.exception("Unexpected error processing document %s", document_id)
                self._mark_failed(
                    document_id,
                    trigger,
                    {"message": str(e) or type(e).__name__, "code": ErrorCode.PROCESSING_ERROR.value},
                    elapsed_ms,
                )
            else:
                elapsed_ms = int((time.monotonic() - started) * 1000)
                self._record_completion(document_id, trigger, outcome, elapsed_ms)

        self._reaggregate(document_id)
        return self.get_state(document_id)

    async def _execute(self, document_id: str) -> _RunOutcome:
        """Extract every enabled column of the document and mark it completed."""
        db = self.session_factory()
        try:
            document = get_document(db, document_id)
            columns = list_columns(db, document.project_id, enabled_only=True)
            kind = classify_content(document.mime_type, document.extension)
            outcome = _RunOutcome(content_kind=kind)

            if not columns:
                logger.info("Document %s has no enabled columns; nothing to extract", document_id)
                self._complete(db, document)
                return outcome

            try:
                ensure_supported(kind, document.mime_type, document.extension)
            except UnsupportedContentKindError as e:
                logger.info("%s; using best-effort path for %s", e, document_id)

            content = await self.content_source.fetch_content(document.content_url)
            self._set_progress(db, document, PROGRESS_CONTENT_READY)

            text = await self._obtain_text(content, kind, outcome)
            if text is not None:
                result = await asyncio.to_thread(
                    self.extraction_client.extract, columns, kind, text=text
                )
            else:
                image_url = await asyncio.to_thread(self.pdf_service.image_data_url, content)
                outcome.extraction_method = VISUAL_METHOD
                result = await asyncio.to_thread(
                    self.extraction_client.extract,
                    columns,
                    kind,
                    image_url=image_url or document.content_url,
                )
            outcome.result = result
            self._set_progress(db, document, PROGRESS_EXTRACTED)

            enabled = {c.id for c in columns}
            data = {k: v for k, v in (document.extracted_data or {}).items() if k in enabled}
            for column_id, value in result.values.items():
                data[column_id] = value.model_dump(mode="json")
            document.extracted_data = data
            self._complete(db, document)
            return outcome
        finally:
            db.close()

    async def _obtain_text(self, content: bytes, kind: ContentKind, outcome: _RunOutcome) -> str | None:
        """
        Run the text extractor for pdf and unknown content.

        Returns None when the visual path should be used instead. Unknown
        content falls back to the visual path if no text could be obtained.
        """
        if kind == ContentKind.IMAGE:
            return None
        try:
            text_result = await asyncio.to_thread(self.text_extractor.extract, content)
        except UnusableContentError as e:
            outcome.attempts = e.attempts
            if kind == ContentKind.UNKNOWN:
                logger.info("No text from unknown content; falling back to visual extraction")
                return None
            raise
        outcome.attempts = [a.to_dict() for a in text_result.attempts]
        outcome.extraction_method = text_result.method
        return text_result.text

    def _complete(self, db: Session, document: Document) -> None:
        document.status = DocumentStatus.COMPLETED
        document.progress = PROGRESS_DONE
        document.completed_at = datetime.utcnow()
        document.error_message = None
        document.error_code = None
        db.commit()

    def _record_completion(
        self,
        document_id: str,
        trigger: ProcessingTrigger,
        outcome: _RunOutcome,
        elapsed_ms: int,
    ) -> None:
        result = outcome.result
        details = {
            "trigger": trigger.value,
            "contentKind": outcome.content_kind.value,
            "provenanceVersion": provenance_version(outcome.content_kind),
            "extractionMethod": outcome.extraction_method,
            "attempts": outcome.attempts,
            "columnsRequested": len(result.values) if result else 0,
            "columnsExtracted": result.extracted_count if result else 0,
            "malformedResponse": result.malformed if result else False,
            "processingTimeMs": elapsed_ms,
        }
        record_event(self.audit_sink, document_id, audit.PROCESSING_COMPLETED, details)
        logger.info(
            "Processing completed for %s via %s in %dms",
            document_id,
            outcome.extraction_method or "no extraction",
            elapsed_ms,
        )

    def _reaggregate(self, document_id: str) -> None:
        db = self.session_factory()
        try:
            document = db.get(Document, document_id)
            if document is not None:
                reaggregate_for_document(db, document)
        except Exception:
            logger.exception("Re-aggregation after processing %s failed", document_id)
        finally:
            db.close()


# Singleton instance for convenience
_processor: DocumentProcessor | None = None


def get_document_processor() -> DocumentProcessor:
    """Get or create the document processor singleton."""
    global _processor
    if _processor is None:
        from ..database import SessionLocal
        from .ai import get_completion_service
        from .audit import DatabaseAuditSink
        from .content_source import get_content_source

        _processor = DocumentProcessor(
            session_factory=SessionLocal,
            content_source=get_content_source(),
            extraction_client=FieldExtractionClient(get_completion_service()),
            audit_sink=DatabaseAuditSink(SessionLocal),
        )
    return _processor
