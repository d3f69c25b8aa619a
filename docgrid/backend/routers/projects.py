"""
Router for project and column endpoints.

Handles:
- Project creation and lookup
- Column CRUD (type changes blocked once values exist, deletes cascade)
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import (
    ColumnCreateRequest,
    ColumnDefinition,
    ColumnUpdateRequest,
    ProjectCreateRequest,
    ProjectResponse,
)
from ..models_db import Project
from ..services import columns as column_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_response(db: Session, project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        columns=column_service.list_columns(db, project.id),
        created_at=project.created_at.isoformat(),
    )


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreateRequest,
    db: Session = Depends(get_db),
) -> ProjectResponse:
    """Create an empty project."""
    project = column_service.create_project(db, request.name, request.description)
    return _project_response(db, project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    db: Session = Depends(get_db),
) -> ProjectResponse:
    project = column_service.get_project(db, project_id)
    return _project_response(db, project)


@router.get("/{project_id}/columns", response_model=list[ColumnDefinition])
async def list_columns(
    project_id: str,
    db: Session = Depends(get_db),
) -> list[ColumnDefinition]:
    column_service.get_project(db, project_id)
    return column_service.list_columns(db, project_id)


@router.post(
    "/{project_id}/columns",
    response_model=ColumnDefinition,
    status_code=status.HTTP_201_CREATED,
)
async def add_column(
    project_id: str,
    request: ColumnCreateRequest,
    db: Session = Depends(get_db),
) -> ColumnDefinition:
    """
    Add a column to a project.

    Args:
        project_id: Owning project.
        request: Column definition; the id is generated when omitted.
        db: Database session.

    Returns:
        The stored column definition.
    """
    return column_service.add_column(db, project_id, request)


@router.patch("/{project_id}/columns/{column_id}", response_model=ColumnDefinition)
async def update_column(
    project_id: str,
    column_id: str,
    request: ColumnUpdateRequest,
    db: Session = Depends(get_db),
) -> ColumnDefinition:
    """Update a column. Changing the type of a column with values returns 409."""
    return column_service.update_column(db, project_id, column_id, request)


@router.delete("/{project_id}/columns/{column_id}")
async def delete_column(
    project_id: str,
    column_id: str,
    db: Session = Depends(get_db),
) -> dict:
    """Delete a column and strip its values from documents and collections."""
    cleaned = column_service.delete_column(db, project_id, column_id)
    return {"deleted": column_id, "cleaned_records": cleaned}
