"""
Router for document collection endpoints.

Handles:
- Collection CRUD
- Membership: add, remove, hide, show, reorder
- On-demand aggregation of one or all columns
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models import (
    AggregatedValue,
    CollectionCreateRequest,
    CollectionMemberRequest,
    CollectionReorderRequest,
    CollectionResponse,
    CollectionUpdateRequest,
)
from ..models_db import DocumentCollection
from ..services import aggregation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/collections", tags=["collections"])
project_router = APIRouter(prefix="/projects/{project_id}/collections", tags=["collections"])


def _collection_response(collection: DocumentCollection) -> CollectionResponse:
    return CollectionResponse(
        id=collection.id,
        project_id=collection.project_id,
        name=collection.name,
        documents=list(collection.documents or []),
        auto_aggregate=collection.auto_aggregate,
        aggregation_order=list(collection.aggregation_order or []),
        hidden_documents=list(collection.hidden_documents or []),
        extracted_data={
            k: AggregatedValue.model_validate(v)
            for k, v in (collection.extracted_data or {}).items()
        },
        created_at=collection.created_at.isoformat(),
    )


@project_router.post("", response_model=CollectionResponse, status_code=status.HTTP_201_CREATED)
async def create_collection(
    project_id: str,
    request: CollectionCreateRequest,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    collection = aggregation.create_collection(
        db,
        project_id,
        request.name,
        document_ids=request.document_ids,
        auto_aggregate=request.auto_aggregate,
    )
    db.refresh(collection)
    return _collection_response(collection)


@project_router.get("", response_model=list[CollectionResponse])
async def list_collections(
    project_id: str,
    db: Session = Depends(get_db),
) -> list[CollectionResponse]:
    return [_collection_response(c) for c in aggregation.list_collections(db, project_id)]


@router.get("/{collection_id}", response_model=CollectionResponse)
async def get_collection(
    collection_id: str,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    return _collection_response(aggregation.get_collection(db, collection_id))


@router.patch("/{collection_id}", response_model=CollectionResponse)
async def update_collection(
    collection_id: str,
    request: CollectionUpdateRequest,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    collection = aggregation.update_collection(
        db, collection_id, name=request.name, auto_aggregate=request.auto_aggregate
    )
    return _collection_response(collection)


@router.delete("/{collection_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collection(
    collection_id: str,
    db: Session = Depends(get_db),
) -> None:
    aggregation.delete_collection(db, collection_id)


# =============================================================================
# Membership
# =============================================================================


@router.post("/{collection_id}/documents", response_model=CollectionResponse)
async def add_document(
    collection_id: str,
    request: CollectionMemberRequest,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    return _collection_response(aggregation.add_document(db, collection_id, request.document_id))


@router.delete("/{collection_id}/documents/{document_id}", response_model=CollectionResponse)
async def remove_document(
    collection_id: str,
    document_id: str,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    return _collection_response(aggregation.remove_document(db, collection_id, document_id))


@router.post("/{collection_id}/documents/{document_id}/hide", response_model=CollectionResponse)
async def hide_document(
    collection_id: str,
    document_id: str,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    return _collection_response(aggregation.hide_document(db, collection_id, document_id))


@router.post("/{collection_id}/documents/{document_id}/show", response_model=CollectionResponse)
async def show_document(
    collection_id: str,
    document_id: str,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    return _collection_response(aggregation.show_document(db, collection_id, document_id))


@router.put("/{collection_id}/order", response_model=CollectionResponse)
async def reorder_documents(
    collection_id: str,
    request: CollectionReorderRequest,
    db: Session = Depends(get_db),
) -> CollectionResponse:
    """Set the aggregation order; ids that are not members are dropped."""
    return _collection_response(aggregation.reorder_documents(db, collection_id, request.order))


# =============================================================================
# Aggregation
# =============================================================================


@router.post("/{collection_id}/aggregate", response_model=dict[str, AggregatedValue])
async def aggregate_collection(
    collection_id: str,
    db: Session = Depends(get_db),
) -> dict[str, AggregatedValue]:
    """Recompute every enabled column of the collection."""
    return aggregation.aggregate_all(db, collection_id)


@router.post("/{collection_id}/aggregate/{column_id}", response_model=AggregatedValue)
async def aggregate_column(
    collection_id: str,
    column_id: str,
    db: Session = Depends(get_db),
) -> AggregatedValue:
    """Recompute one column of the collection."""
    return aggregation.aggregate(db, collection_id, column_id)
