"""In-process document store, for local use and tests."""
import copy
import uuid
from typing import Optional

from .abstract import DocumentStore


class MemoryDocumentStore(DocumentStore):
    """Keeps documents in a dict of collections.

    Stored and returned fields are deep copies, so callers cannot mutate
    the store by accident.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict]] = {}

    def _collection(self, collection: str) -> dict[str, dict]:
        return self._collections.setdefault(collection, {})

    async def put_document(
        self,
        collection: str,
        document_id: Optional[str],
        fields: dict
    ) -> str:
        document_id = document_id or uuid.uuid4().hex
        self._collection(collection)[document_id] = copy.deepcopy(fields)
        return document_id

    async def get_document(
        self,
        collection: str,
        document_id: str
    ) -> Optional[dict]:
        doc = self._collection(collection).get(document_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def list_documents(
        self,
        collection: str,
        order_by: str,
        direction: str = "desc"
    ) -> list[tuple[str, dict]]:
        self.check_order_field(order_by, direction)
        docs = list(self._collection(collection).items())
        # documents missing the field sort last in either direction
        present = [d for d in docs if d[1].get(order_by) is not None]
        missing = [d for d in docs if d[1].get(order_by) is None]
        present.sort(key=lambda d: d[1][order_by], reverse=direction == "desc")
        return [(doc_id, copy.deepcopy(fields)) for doc_id, fields in present + missing]

    async def delete_document(self, collection: str, document_id: str) -> None:
        self._collection(collection).pop(document_id, None)

    async def update_fields(
        self,
        collection: str,
        document_id: str,
        fields: dict
    ) -> None:
        docs = self._collection(collection)
        if document_id not in docs:
            raise KeyError(document_id)
        docs[document_id].update(copy.deepcopy(fields))

    def __len__(self) -> int:
        return sum(len(c) for c in self._collections.values())
