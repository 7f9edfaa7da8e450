"""Common utilities for tests."""

import unittest.mock
from typing import Any, Optional

from google.api_core.exceptions import AlreadyExists
from mockfirestore import CollectionReference, MockFirestore, Query
from mockfirestore.document import DocumentReference

from smaaks.auth.models import Identity


def patch_mockfirestore() -> None:
    """Apply monkeypatches to mockfirestore to support FieldFilter and equality."""

    def collection_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(CollectionReference, "_where"):
        CollectionReference._where = CollectionReference.where
        CollectionReference.where = collection_where

    def query_where(
        self: Any,
        field_path: Optional[str] = None,
        op_string: Optional[str] = None,
        value: Any = None,
        filter: Any = None,
    ) -> Any:
        if filter:
            return self._where(filter.field_path, filter.op_string, filter.value)
        return self._where(field_path, op_string, value)

    if not hasattr(Query, "_where"):
        Query._where = Query.where
        Query.where = query_where

    # mockfirestore creates an empty placeholder whenever a reference is
    # built; Firestore never lists documents that do not exist.
    if not hasattr(CollectionReference, "_orig_stream"):
        CollectionReference._orig_stream = CollectionReference.stream

        def stream_existing(self: Any, *args: Any, **kwargs: Any) -> Any:
            for snapshot in self._orig_stream(*args, **kwargs):
                if snapshot.exists:
                    yield snapshot

        CollectionReference.stream = stream_existing

    def doc_ref_eq(self: Any, other: Any) -> bool:
        if not isinstance(other, DocumentReference):
            return False
        return self._path == other._path

    if not hasattr(DocumentReference, "_orig_eq"):
        DocumentReference._orig_eq = DocumentReference.__eq__
        DocumentReference.__eq__ = doc_ref_eq
        DocumentReference.__hash__ = lambda self: hash(tuple(self._path))


class MockBatch:
    """Write batch applying its operations in order on commit."""

    def __init__(self, db: Any) -> None:
        self.db = db
        self.writes: list[tuple[str, Any, Any]] = []
        self.commit = unittest.mock.MagicMock(side_effect=self._real_commit)

    def create(self, ref: Any, data: Any) -> None:
        self.writes.append(("create", ref, data))

    def update(self, ref: Any, data: Any) -> None:
        self.writes.append(("update", ref, data))

    def set(self, ref: Any, data: Any, merge: bool = False) -> None:
        self.writes.append(("set", ref, data))

    def delete(self, ref: Any) -> None:
        self.writes.append(("delete", ref, None))

    def _real_commit(self) -> None:
        for op, ref, _data in self.writes:
            if op == "create" and ref.get().exists:
                raise AlreadyExists(f"Document already exists: {ref.id}")
        for op, ref, data in self.writes:
            if op == "delete":
                ref.delete()
            elif op == "update":
                ref.update(data)
            elif ref.get().exists:
                # Sub-collections live inside the parent's dict in
                # mockfirestore, so a plain set() would drop them.
                ref.update(data)
            else:
                ref.set(data)


class FirestoreTestCase(unittest.TestCase):
    """Base test case with a patched in-memory Firestore."""

    def setUp(self) -> None:
        """Set up an empty database."""
        patch_mockfirestore()
        self.db = MockFirestore()
        self.db.batch = lambda: MockBatch(self.db)

    def tearDown(self) -> None:
        """Clear the database."""
        self.db.reset()


OWNER = Identity(uid="owner", display_name="Olivia Owner", email="olivia@example.com")
ALICE = Identity(uid="alice", display_name="Alice", email="alice@example.com")
BOB = Identity(uid="bob", display_name="Bob", email="bob@example.com")
CAROL = Identity(uid="carol", display_name="Carol", email="carol@example.com")
DAVE = Identity(uid="dave", display_name="", email="dave@example.com")
