"""
Project and column management.

Handles:
- Project lookup and creation
- Column CRUD with stable column ids
- Type-change protection for columns that already hold values
- Cascade removal of a deleted column from every extracted-value map
"""

import logging
import uuid

from sqlalchemy.orm import Session

from ..models import ColumnCreateRequest, ColumnDefinition, ColumnType, ColumnUpdateRequest
from ..models_db import Document, DocumentCollection, Project, ProjectColumn
from .exceptions import ColumnExistsError, ColumnInUseError, ColumnNotFoundError, ProjectNotFoundError

logger = logging.getLogger(__name__)


def column_to_definition(column: ProjectColumn) -> ColumnDefinition:
    return ColumnDefinition(
        id=column.key,
        name=column.name,
        prompt=column.prompt,
        type=ColumnType(column.type),
        ai_model=column.ai_model,
        extraction_enabled=column.extraction_enabled,
    )


def get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


def create_project(db: Session, name: str, description: str = "") -> Project:
    project = Project(name=name, description=description)
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("Created project %s ('%s')", project.id, name)
    return project


def _get_column(db: Session, project_id: str, column_id: str) -> ProjectColumn:
    column = (
        db.query(ProjectColumn)
        .filter(ProjectColumn.project_id == project_id, ProjectColumn.key == column_id)
        .first()
    )
    if column is None:
        raise ColumnNotFoundError(f"Column {column_id} not found in project {project_id}")
    return column


def get_column(db: Session, project_id: str, column_id: str) -> ColumnDefinition:
    return column_to_definition(_get_column(db, project_id, column_id))


def list_columns(db: Session, project_id: str, enabled_only: bool = False) -> list[ColumnDefinition]:
    """
    Columns of a project in display order.

    Args:
        db: Database session.
        project_id: Owning project.
        enabled_only: Only return columns with extraction enabled.

    Returns:
        Column definitions ordered by position.
    """
    query = db.query(ProjectColumn).filter(ProjectColumn.project_id == project_id)
    if enabled_only:
        query = query.filter(ProjectColumn.extraction_enabled.is_(True))
    columns = query.order_by(ProjectColumn.position, ProjectColumn.key).all()
    return [column_to_definition(c) for c in columns]


def column_is_referenced(db: Session, project_id: str, column_id: str) -> bool:
    """Whether any document or collection of the project stores a value for the column."""
    documents = db.query(Document.extracted_data).filter(Document.project_id == project_id)
    if any(column_id in (data or {}) for (data,) in documents):
        return True
    collections = db.query(DocumentCollection.extracted_data).filter(
        DocumentCollection.project_id == project_id
    )
    return any(column_id in (data or {}) for (data,) in collections)


def add_column(db: Session, project_id: str, request: ColumnCreateRequest) -> ColumnDefinition:
    """
    Add a column to the end of a project's column list.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        ColumnExistsError: If the column id is already taken.
    """
    get_project(db, project_id)
    key = request.id or f"col_{uuid.uuid4().hex[:12]}"

    exists = (
        db.query(ProjectColumn)
        .filter(ProjectColumn.project_id == project_id, ProjectColumn.key == key)
        .first()
    )
    if exists is not None:
        raise ColumnExistsError(f"Column id '{key}' already exists in project {project_id}")

    position = db.query(ProjectColumn).filter(ProjectColumn.project_id == project_id).count()
    column = ProjectColumn(
        project_id=project_id,
        key=key,
        name=request.name,
        prompt=request.prompt,
        type=request.type.value,
        ai_model=request.ai_model,
        extraction_enabled=request.extraction_enabled,
        position=position,
    )
    db.add(column)
    db.commit()
    db.refresh(column)
    logger.info("Added column '%s' (%s) to project %s", key, request.type.value, project_id)
    return column_to_definition(column)


def update_column(
    db: Session,
    project_id: str,
    column_id: str,
    request: ColumnUpdateRequest,
) -> ColumnDefinition:
    """
    Apply a partial update to a column.

    Name, prompt, model hint and the enabled flag can always change. The
    type cannot change once any stored value references the column.

    Raises:
        ColumnNotFoundError: If the column does not exist.
        ColumnInUseError: On a type change for a referenced column.
    """
    column = _get_column(db, project_id, column_id)

    if request.type is not None and request.type.value != column.type:
        if column_is_referenced(db, project_id, column_id):
            raise ColumnInUseError(
                f"Column '{column_id}' already has extracted values; its type cannot change"
            )
        column.type = request.type.value

    if request.name is not None:
        column.name = request.name
    if request.prompt is not None:
        column.prompt = request.prompt
    if request.ai_model is not None:
        column.ai_model = request.ai_model
    if request.extraction_enabled is not None:
        column.extraction_enabled = request.extraction_enabled

    db.commit()
    db.refresh(column)
    return column_to_definition(column)


def delete_column(db: Session, project_id: str, column_id: str) -> int:
    """
    Delete a column and remove its key from every extracted-value map.

    Returns:
        Number of documents and collections whose data was modified.
    """
    column = _get_column(db, project_id, column_id)
    touched = 0

    for document in db.query(Document).filter(Document.project_id == project_id):
        if column_id in (document.extracted_data or {}):
            document.extracted_data = {
                k: v for k, v in document.extracted_data.items() if k != column_id
            }
            touched += 1

    for collection in db.query(DocumentCollection).filter(DocumentCollection.project_id == project_id):
        if column_id in (collection.extracted_data or {}):
            collection.extracted_data = {
                k: v for k, v in collection.extracted_data.items() if k != column_id
            }
            touched += 1

    db.delete(column)
    db.commit()
    logger.info(
        "Deleted column '%s' from project %s (%d record(s) cleaned)",
        column_id,
        project_id,
        touched,
    )
    return touched
