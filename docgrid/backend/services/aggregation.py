"""
Collection management and aggregation of per-document values.

Handles:
- Collection CRUD and membership (add, remove, hide, show, reorder)
- Ordering of visible documents by the collection's aggregation order
- Merging one column's values across the visible documents into a single value
"""

import logging
from collections.abc import Sequence
from typing import Any

from sqlalchemy.orm import Session

from ..models import (
    AggregatedValue,
    AggregationType,
    ColumnType,
    ExtractedValue,
    ValueStatus,
)
from ..models_db import Document, DocumentCollection
from .columns import get_column, get_project, list_columns
from .exceptions import (
    CollectionNotFoundError,
    DocumentNotFoundError,
    InvalidCollectionMemberError,
)

logger = logging.getLogger(__name__)

AGGREGATION_DELIMITER = " | "


# =============================================================================
# Pure Aggregation
# =============================================================================


def _unique(ids: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(ids))


def ordered_visible_documents(
    documents: Sequence[str],
    aggregation_order: Sequence[str],
    hidden_documents: Sequence[str],
) -> list[str]:
    """
    Visible member ids in aggregation order.

    Members missing from `aggregation_order` follow in `documents` order.
    Ids that are not members are ignored.
    """
    members = _unique(documents)
    member_set = set(members)
    hidden = set(hidden_documents)

    ordered = [d for d in _unique(aggregation_order) if d in member_set]
    listed = set(ordered)
    ordered.extend(d for d in members if d not in listed)
    return [d for d in ordered if d not in hidden]


def _aggregate_status(statuses: Sequence[ValueStatus | None]) -> ValueStatus:
    if statuses and all(s == ValueStatus.YES for s in statuses):
        return ValueStatus.YES
    if any(s == ValueStatus.NO for s in statuses):
        return ValueStatus.NO
    return ValueStatus.PENDING


def empty_placeholder(column_type: ColumnType | None = None) -> AggregatedValue:
    return AggregatedValue(
        value="",
        type=column_type,
        status=None,
        confidence=0.0,
        source_documents=[],
        aggregation_type=AggregationType.SINGLE,
    )


def aggregate_values(
    entries: Sequence[tuple[str, ExtractedValue | None]],
    column_type: ColumnType | None = None,
) -> AggregatedValue:
    """
    Merge ordered per-document values into one aggregated value.

    Args:
        entries: (document id, value or None) pairs in aggregation order.
        column_type: Type recorded on the result.

    Returns:
        The empty placeholder when nothing contributes, the single value
        unchanged when one document contributes, otherwise the values joined
        with " | " and the mean confidence.
    """
    contributing = [(doc_id, v) for doc_id, v in entries if v is not None and not v.is_empty]
    if not contributing:
        return empty_placeholder(column_type)

    source_documents = [doc_id for doc_id, _ in contributing]
    values = [v for _, v in contributing]
    status = _aggregate_status([v.status for v in values])
    timestamps = [v.extracted_at for v in values if v.extracted_at is not None]
    extracted_at = max(timestamps) if timestamps else None

    if len(values) == 1:
        only = values[0]
        return AggregatedValue(
            value=only.value,
            type=column_type or only.type,
            status=status,
            confidence=only.confidence,
            extracted_at=extracted_at,
            extracted_by=only.extracted_by,
            source_documents=source_documents,
            aggregation_type=AggregationType.SINGLE,
        )

    providers = {v.extracted_by.model_dump_json() if v.extracted_by else "" for v in values}
    return AggregatedValue(
        value=AGGREGATION_DELIMITER.join(v.value for v in values),
        type=column_type or values[0].type,
        status=status,
        confidence=sum(v.confidence for v in values) / len(values),
        extracted_at=extracted_at,
        extracted_by=values[0].extracted_by if len(providers) == 1 else None,
        source_documents=source_documents,
        aggregation_type=AggregationType.CONCATENATED,
    )


# =============================================================================
# Collection Access
# =============================================================================


def get_collection(db: Session, collection_id: str) -> DocumentCollection:
    collection = db.get(DocumentCollection, collection_id)
    if collection is None:
        raise CollectionNotFoundError(f"Collection {collection_id} not found")
    return collection


def list_collections(db: Session, project_id: str) -> list[DocumentCollection]:
    return (
        db.query(DocumentCollection)
        .filter(DocumentCollection.project_id == project_id)
        .order_by(DocumentCollection.created_at)
        .all()
    )


def collections_containing(db: Session, document: Document) -> list[DocumentCollection]:
    """Collections of the document's project that list it as a member."""
    return [
        c for c in list_collections(db, document.project_id)
        if document.id in (c.documents or [])
    ]


def _member_document(db: Session, collection: DocumentCollection, document_id: str) -> Document:
    document = db.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")
    if document.project_id != collection.project_id:
        raise InvalidCollectionMemberError(
            f"Document {document_id} belongs to a different project than collection {collection.id}"
        )
    return document


def create_collection(
    db: Session,
    project_id: str,
    name: str,
    document_ids: Sequence[str] = (),
    auto_aggregate: bool = True,
) -> DocumentCollection:
    """Create a collection, optionally seeded with documents of the same project."""
    get_project(db, project_id)
    collection = DocumentCollection(
        project_id=project_id,
        name=name,
        documents=[],
        aggregation_order=[],
        hidden_documents=[],
        extracted_data={},
        auto_aggregate=auto_aggregate,
    )
    for document_id in _unique(document_ids):
        _member_document(db, collection, document_id)
    collection.documents = _unique(document_ids)
    collection.aggregation_order = list(collection.documents)

    db.add(collection)
    db.commit()
    db.refresh(collection)
    logger.info("Created collection %s with %d document(s)", collection.id, len(collection.documents))
    if auto_aggregate and collection.documents:
        aggregate_all(db, collection.id)
    return collection


def update_collection(
    db: Session,
    collection_id: str,
    name: str | None = None,
    auto_aggregate: bool | None = None,
) -> DocumentCollection:
    collection = get_collection(db, collection_id)
    if name is not None:
        collection.name = name
    if auto_aggregate is not None:
        collection.auto_aggregate = auto_aggregate
    db.commit()
    db.refresh(collection)
    return collection


def delete_collection(db: Session, collection_id: str) -> None:
    collection = get_collection(db, collection_id)
    db.delete(collection)
    db.commit()


# =============================================================================
# Membership
# =============================================================================


def _after_membership_change(db: Session, collection: DocumentCollection) -> DocumentCollection:
    db.commit()
    db.refresh(collection)
    if collection.auto_aggregate:
        aggregate_all(db, collection.id)
        db.refresh(collection)
    return collection


def _require_member(collection: DocumentCollection, document_id: str) -> None:
    if document_id not in (collection.documents or []):
        raise InvalidCollectionMemberError(
            f"Document {document_id} is not a member of collection {collection.id}"
        )


def add_document(db: Session, collection_id: str, document_id: str) -> DocumentCollection:
    """Append a document to the collection and its aggregation order. Idempotent."""
    collection = get_collection(db, collection_id)
    _member_document(db, collection, document_id)
    if document_id in (collection.documents or []):
        return collection

    collection.documents = [*collection.documents, document_id]
    collection.aggregation_order = [*collection.aggregation_order, document_id]
    return _after_membership_change(db, collection)


def remove_document(db: Session, collection_id: str, document_id: str) -> DocumentCollection:
    """Remove a document from the member list, the order and the hidden set."""
    collection = get_collection(db, collection_id)
    _require_member(collection, document_id)

    collection.documents = [d for d in collection.documents if d != document_id]
    collection.aggregation_order = [d for d in collection.aggregation_order if d != document_id]
    collection.hidden_documents = [d for d in collection.hidden_documents if d != document_id]
    return _after_membership_change(db, collection)


def hide_document(db: Session, collection_id: str, document_id: str) -> DocumentCollection:
    collection = get_collection(db, collection_id)
    _require_member(collection, document_id)
    if document_id not in collection.hidden_documents:
        collection.hidden_documents = [*collection.hidden_documents, document_id]
    return _after_membership_change(db, collection)


def show_document(db: Session, collection_id: str, document_id: str) -> DocumentCollection:
    collection = get_collection(db, collection_id)
    _require_member(collection, document_id)
    collection.hidden_documents = [d for d in collection.hidden_documents if d != document_id]
    return _after_membership_change(db, collection)


def reorder_documents(db: Session, collection_id: str, order: Sequence[str]) -> DocumentCollection:
    """
    Replace the aggregation order.

    Ids that are not members are dropped; members left out keep their
    implicit position after the listed ones.
    """
    collection = get_collection(db, collection_id)
    members = set(collection.documents or [])
    collection.aggregation_order = [d for d in _unique(order) if d in members]
    return _after_membership_change(db, collection)


# =============================================================================
# Aggregation
# =============================================================================


def _document_values(
    db: Session,
    document_ids: Sequence[str],
    column_id: str,
) -> list[tuple[str, ExtractedValue | None]]:
    if not document_ids:
        return []
    documents = {
        d.id: d for d in db.query(Document).filter(Document.id.in_(list(document_ids))).all()
    }
    entries: list[tuple[str, ExtractedValue | None]] = []
    for document_id in document_ids:
        document = documents.get(document_id)
        raw: Any = (document.extracted_data or {}).get(column_id) if document else None
        entries.append((document_id, ExtractedValue.model_validate(raw) if raw else None))
    return entries


def _compute(db: Session, collection: DocumentCollection, column_id: str, column_type: ColumnType) -> AggregatedValue:
    visible = ordered_visible_documents(
        collection.documents or [],
        collection.aggregation_order or [],
        collection.hidden_documents or [],
    )
    if not visible:
        return empty_placeholder(column_type)
    return aggregate_values(_document_values(db, visible, column_id), column_type)


def aggregate(db: Session, collection_id: str, column_id: str) -> AggregatedValue:
    """
    Recompute and store the aggregated value of one column.

    Repeated calls with unchanged inputs store and return identical values.

    Raises:
        CollectionNotFoundError: If the collection does not exist.
        ColumnNotFoundError: If the column is not part of the project.
    """
    collection = get_collection(db, collection_id)
    column = get_column(db, collection.project_id, column_id)

    result = _compute(db, collection, column_id, column.type)
    data = dict(collection.extracted_data or {})
    data[column_id] = result.model_dump(mode="json")
    collection.extracted_data = data
    db.commit()

    logger.info(
        "Aggregated column '%s' of collection %s: %s from %d document(s)",
        column_id,
        collection_id,
        result.aggregation_type.value,
        len(result.source_documents),
    )
    return result


def aggregate_all(db: Session, collection_id: str) -> dict[str, AggregatedValue]:
    """
    Recompute every enabled column of a collection.

    The stored map is rebuilt in column order and only holds enabled columns.
    """
    collection = get_collection(db, collection_id)
    columns = list_columns(db, collection.project_id, enabled_only=True)

    results = {c.id: _compute(db, collection, c.id, c.type) for c in columns}
    collection.extracted_data = {k: v.model_dump(mode="json") for k, v in results.items()}
    db.commit()

    logger.info("Aggregated %d column(s) of collection %s", len(results), collection_id)
    return results


def reaggregate_for_document(db: Session, document: Document) -> list[str]:
    """
    Re-aggregate every auto-aggregating collection containing `document`.

    Returns:
        Ids of the collections that were recomputed.
    """
    refreshed: list[str] = []
    for collection in collections_containing(db, document):
        if collection.auto_aggregate:
            aggregate_all(db, collection.id)
            refreshed.append(collection.id)
    return refreshed
