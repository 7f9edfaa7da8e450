"""Thin adapter over the Firestore client.

The workflow services read and write through these helpers so that store
failures surface uniformly as :class:`~smaaks.errors.WriteFailed` and every
document is returned as a plain dict carrying its ``id``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore
from flask import current_app, has_app_context
from google.api_core.exceptions import AlreadyExists

from smaaks.core.constants import FIRESTORE_BATCH_LIMIT
from smaaks.errors import WriteFailed

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.batch import WriteBatch
    from google.cloud.firestore_v1.client import Client

Predicate = tuple[str, str, Any]


def _log_failure(action: str, path: str, error: Exception) -> None:
    if has_app_context():
        current_app.logger.error(f"Firestore {action} failed for {path}: {error}")


def snapshot_to_dict(doc: DocumentSnapshot) -> dict[str, Any] | None:
    """Return the document data with its ID, or None if it does not exist."""
    if not doc.exists:
        return None
    data = doc.to_dict() or {}
    data["id"] = doc.id
    return data


def create(
    db: Client, collection: str, data: dict[str, Any], doc_id: str | None = None
) -> str:
    """Create a document and return its ID."""
    collection_ref = db.collection(collection)
    doc_ref = collection_ref.document(doc_id) if doc_id else collection_ref.document()
    try:
        doc_ref.set(data)
    except Exception as e:
        _log_failure("create", collection, e)
        raise WriteFailed() from e
    return doc_ref.id


def get(db: Client, collection: str, doc_id: str) -> dict[str, Any] | None:
    """Fetch a single document by ID."""
    doc = db.collection(collection).document(doc_id).get()
    return snapshot_to_dict(doc)


def update(db: Client, collection: str, doc_id: str, patch: dict[str, Any]) -> None:
    """Apply a partial update to an existing document."""
    try:
        db.collection(collection).document(doc_id).update(patch)
    except Exception as e:
        _log_failure("update", f"{collection}/{doc_id}", e)
        raise WriteFailed() from e


def delete(db: Client, collection: str, doc_id: str) -> None:
    """Delete a document."""
    try:
        db.collection(collection).document(doc_id).delete()
    except Exception as e:
        _log_failure("delete", f"{collection}/{doc_id}", e)
        raise WriteFailed() from e


def _apply_predicates(query: Any, predicates: Iterable[Predicate]) -> Any:
    for field, op, value in predicates:
        query = query.where(filter=firestore.FieldFilter(field, op, value))
    return query


def query(
    db: Client,
    collection: str,
    predicates: Iterable[Predicate] = (),
    order_by: str | None = None,
    descending: bool = False,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """Run a filtered query and return the matching documents."""
    q = _apply_predicates(db.collection(collection), predicates)
    if order_by:
        direction = (
            firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
        )
        q = q.order_by(order_by, direction=direction)
    if limit:
        q = q.limit(limit)
    results = []
    for doc in q.stream():
        data = snapshot_to_dict(doc)
        if data is not None:
            results.append(data)
    return results


def subscribe(
    db: Client,
    collection: str,
    callback: Callable[[list[dict[str, Any]]], None],
    predicates: Iterable[Predicate] = (),
) -> Callable[[], None]:
    """Listen to a collection and push the full current set on every change.

    Returns a function that stops the listener.
    """

    def on_snapshot(docs: list[Any], changes: Any, read_time: Any) -> None:
        results = []
        for doc in docs:
            data = snapshot_to_dict(doc)
            if data is not None:
                results.append(data)
        callback(results)

    q = _apply_predicates(db.collection(collection), predicates)
    watch = q.on_snapshot(on_snapshot)
    return watch.unsubscribe


def commit(batch: WriteBatch) -> None:
    """Commit a write batch, converting store errors into WriteFailed.

    ``AlreadyExists`` is let through: it signals a lost ``create()`` race
    that callers resolve themselves.
    """
    try:
        batch.commit()
    except AlreadyExists:
        raise
    except Exception as e:
        _log_failure("batch commit", "batch", e)
        raise WriteFailed() from e


def delete_refs(db: Client, refs: Iterable[Any]) -> int:
    """Delete documents in batches and return how many were deleted.

    Each batch is committed before the next one is started, so re-running
    after a failure only has the remaining documents left to delete.
    """
    batch = db.batch()
    operation_count = 0
    deleted = 0
    for ref in refs:
        batch.delete(ref)
        operation_count += 1
        deleted += 1

        # Commit batch if it gets too large (Firestore limit is 500)
        if operation_count >= FIRESTORE_BATCH_LIMIT:
            commit(batch)
            batch = db.batch()
            operation_count = 0

    if operation_count > 0:
        commit(batch)
    return deleted
