"""
SQLAlchemy database models for the document extraction pipeline.

This module defines the ORM models for persisting projects, their column
definitions, documents, document collections and audit events.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class DocumentStatus(enum.Enum):
    """Status of a document in the extraction pipeline."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Project(Base):
    """
    A project owning columns, documents and collections.

    Ownership and sharing are handled outside this service.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    # Relationships
    columns: Mapped[list["ProjectColumn"]] = relationship(
        "ProjectColumn",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectColumn.position",
    )

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name='{self.name}')>"


class ProjectColumn(Base):
    """
    An extractable column of a project.

    `key` is the stable column id referenced by extracted-value maps.
    """

    __tablename__ = "project_columns"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    prompt: Mapped[str] = mapped_column(
        Text,
        default="",
        nullable=False,
    )
    type: Mapped[str] = mapped_column(
        String(32),
        default="text",
        nullable=False,
    )
    ai_model: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )
    extraction_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Relationships
    project: Mapped[Project] = relationship(
        "Project",
        back_populates="columns",
    )

    __table_args__ = (
        UniqueConstraint("project_id", "key", name="uq_column_project_key"),
    )

    def __repr__(self) -> str:
        return f"<ProjectColumn(key='{self.key}', type='{self.type}', enabled={self.extraction_enabled})>"


class Document(Base):
    """
    A single uploaded document in the extraction pipeline.

    Tracks processing state and the per-column extracted values. File bytes
    live behind `content_url`; only metadata is stored here.
    """

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    original_name: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )
    mime_type: Mapped[str] = mapped_column(
        String(255),
        default="",
        nullable=False,
    )
    extension: Mapped[str] = mapped_column(
        String(32),
        default="",
        nullable=False,
    )
    file_size_bytes: Mapped[int | None] = mapped_column(
        nullable=True,
    )
    content_url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus),
        default=DocumentStatus.PENDING,
        nullable=False,
        index=True,
    )
    progress: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    error_code: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    started_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        nullable=True,
    )
    retry_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    extracted_data: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
        comment="columnId -> ExtractedValue as JSON",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, name='{self.original_name}', status={self.status.value})>"


class DocumentCollection(Base):
    """
    An ordered grouping of documents whose column values are merged.

    `aggregation_order` and `hidden_documents` only ever hold ids that are
    members of `documents`.
    """

    __tablename__ = "document_collections"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
    )
    project_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    documents: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    auto_aggregate: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )
    aggregation_order: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    hidden_documents: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    extracted_data: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
        comment="columnId -> AggregatedValue as JSON",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DocumentCollection(id={self.id}, name='{self.name}', documents={len(self.documents or [])})>"


class AuditEvent(Base):
    """Lifecycle and extraction event recorded by the audit sink."""

    __tablename__ = "audit_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=_new_id,
    )
    entity_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    details: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AuditEvent(entity_id={self.entity_id}, action='{self.action}')>"
