"""Pytest configuration and fixtures."""

import io
import json
import os
import re
from collections.abc import Callable, Generator

# Keep the application engine in memory for the whole test session
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docgrid.backend.database import build_engine, get_db, init_db
from docgrid.backend.main import app
from docgrid.backend.models import ColumnCreateRequest, ColumnType
from docgrid.backend.models_db import Document, DocumentStatus
from docgrid.backend.services import columns as column_service
from docgrid.backend.services.ai import CompletionRequest, FieldExtractionClient
from docgrid.backend.services.audit import DatabaseAuditSink
from docgrid.backend.services.exceptions import ContentUnavailableError
from docgrid.backend.services.pdf_service import PDFService
from docgrid.backend.services.processing import DocumentProcessor, get_document_processor
from docgrid.backend.services.text_extraction import TextExtractionStrategy, TextExtractor

SAMPLE_TEXT = (
    "INVOICE No. 4711\n"
    "Acme Corp, 1 Main Street, Springfield\n"
    "Invoice dated 2024-01-15, payment due within 30 days.\n"
    "Total due: $1,250.00\n"
)


# =============================================================================
# Fakes
# =============================================================================


def extractions_json(entries: list[tuple[str, object, object]]) -> str:
    """Build a completion body from (columnId, value, confidence) triples."""
    return json.dumps(
        {"extractions": [{"columnId": c, "value": v, "confidence": conf} for c, v, conf in entries]}
    )


class FakeCompletionService:
    """Completion service returning canned bodies and recording requests."""

    def __init__(
        self,
        response: str | None = None,
        responder: Callable[[CompletionRequest], str] | None = None,
        error: Exception | None = None,
    ):
        self.response = response
        self.responder = responder
        self.error = error
        self.requests: list[CompletionRequest] = []

    def complete(self, request: CompletionRequest) -> str:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.responder is not None:
            return self.responder(request)
        return self.response or ""


_COLUMN_LINE = re.compile(r"^- id: (\S+) \| name: .*? \| type: (\w+) \|", re.MULTILINE)
_ISO_DATE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")


def date_finding_responder(request: CompletionRequest) -> str:
    """Answer date columns with the first ISO date found in the document text."""
    text = request.user_prompt.split("## Columns to Extract:")[0]
    match = _ISO_DATE.search(text)
    entries = []
    for column_id, column_type in _COLUMN_LINE.findall(request.user_prompt):
        if column_type == "date" and match:
            entries.append((column_id, match.group(0), 0.92))
        else:
            entries.append((column_id, "", 0.0))
    return extractions_json(entries)


class FakeContentSource:
    """Content source serving bytes from a dict."""

    def __init__(self, payloads: dict[str, bytes] | None = None, error: Exception | None = None):
        self.payloads = payloads or {}
        self.error = error
        self.calls: list[str] = []

    async def fetch_content(self, locator: str) -> bytes:
        self.calls.append(locator)
        if self.error is not None:
            raise self.error
        if locator not in self.payloads:
            raise ContentUnavailableError("Content source returned HTTP 404")
        return self.payloads[locator]


class FailingAuditSink:
    def record(self, entity_id, action, details):
        raise RuntimeError("audit store down")


def text_strategy(name: str, text: str | None = None, error: Exception | None = None) -> TextExtractionStrategy:
    """A strategy that returns `text` or raises `error`, counting calls."""

    def _extract(content: bytes) -> str:
        _extract.calls += 1
        if error is not None:
            raise error
        return text or ""

    _extract.calls = 0
    return TextExtractionStrategy(name, _extract)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def audit_sink(session_factory) -> DatabaseAuditSink:
    return DatabaseAuditSink(session_factory)


def load_document(session_factory: sessionmaker[Session], document_id: str) -> Document:
    """Read a document through a fresh session."""
    session = session_factory()
    try:
        return session.get(Document, document_id)
    finally:
        session.close()


def events(sink: DatabaseAuditSink, entity_id: str, action: str) -> list[dict]:
    return [e.details for e in sink.events_for(entity_id) if e.action == action]


# =============================================================================
# Seed Data
# =============================================================================


@pytest.fixture
def project(db):
    """A project with an invoice-date, a total and a vendor column."""
    project = column_service.create_project(db, "Invoices")
    column_service.add_column(
        db,
        project.id,
        ColumnCreateRequest(id="invoice_date", name="Invoice Date", prompt="extract the invoice date", type=ColumnType.DATE),
    )
    column_service.add_column(
        db,
        project.id,
        ColumnCreateRequest(id="total", name="Total", prompt="the total amount due", type=ColumnType.PRICE),
    )
    column_service.add_column(
        db,
        project.id,
        ColumnCreateRequest(id="vendor", name="Vendor", prompt="issuing organization", type=ColumnType.ORGANIZATION),
    )
    return project


@pytest.fixture
def make_document(db, project):
    """Factory creating documents directly in the database."""

    def _make(
        name: str = "invoice.pdf",
        mime_type: str = "application/pdf",
        extension: str = "pdf",
        status: DocumentStatus = DocumentStatus.PENDING,
        extracted_data: dict | None = None,
        project_id: str | None = None,
    ) -> Document:
        document = Document(
            project_id=project_id or project.id,
            original_name=name,
            mime_type=mime_type,
            extension=extension,
            content_url=f"https://files.example.com/{name}",
            status=status,
            extracted_data=extracted_data or {},
        )
        db.add(document)
        db.commit()
        db.refresh(document)
        return document

    return _make


@pytest.fixture
def png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# Processor
# =============================================================================


@pytest.fixture
def make_processor(session_factory, audit_sink):
    """Factory building a DocumentProcessor around fakes."""

    def _make(
        completion: FakeCompletionService,
        content_source: FakeContentSource,
        strategies: list[TextExtractionStrategy] | None = None,
        stagger_seconds: float = 0.0,
        sink=audit_sink,
    ) -> DocumentProcessor:
        if strategies is None:
            strategies = [text_strategy("layout", SAMPLE_TEXT)]
        return DocumentProcessor(
            session_factory=session_factory,
            content_source=content_source,
            extraction_client=FieldExtractionClient(completion, model="gpt-4o", max_prompt_chars=15000),
            text_extractor=TextExtractor(strategies, min_text_length=50),
            pdf_service=PDFService(),
            audit_sink=sink,
            stagger_seconds=stagger_seconds,
            max_concurrent_jobs=5,
        )

    return _make


@pytest.fixture
def client(session_factory, make_processor) -> Generator[TestClient, None, None]:
    """Test client wired to the in-memory database and a fake-backed processor."""
    completion = FakeCompletionService(responder=date_finding_responder)
    content_source = FakeContentSource(
        {
            "https://files.example.com/invoice.pdf": b"%PDF-1.4 fake",
        }
    )
    processor = make_processor(completion, content_source)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_document_processor] = lambda: processor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
