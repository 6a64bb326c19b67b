"""
Document store boundary.

The vault treats the remote store as a dumb key/value store with
list-by-collection and single-document CRUD. Implementations never see
plaintext; ``ciphertext``, ``salt`` and ``iv`` are opaque strings that
must never be indexed or used for ordering.
"""
from abc import ABC, abstractmethod
from typing import Optional

UNORDERABLE_FIELDS = frozenset({"ciphertext", "salt", "iv"})


class DocumentStore(ABC):
    """Abstract async document store."""

    @staticmethod
    def check_order_field(order_by: str, direction: str) -> None:
        """Refuse ordering on crypto parameters or unknown directions."""
        if order_by in UNORDERABLE_FIELDS:
            raise ValueError(f"Cannot order vault documents by {order_by!r}")
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {direction!r}")

    @abstractmethod
    async def put_document(
        self,
        collection: str,
        document_id: Optional[str],
        fields: dict
    ) -> str:
        """Create or overwrite a document, returning its id."""

    @abstractmethod
    async def get_document(
        self,
        collection: str,
        document_id: str
    ) -> Optional[dict]:
        """Return the document fields, or None when it does not exist."""

    @abstractmethod
    async def list_documents(
        self,
        collection: str,
        order_by: str,
        direction: str = "desc"
    ) -> list[tuple[str, dict]]:
        """Return (document_id, fields) pairs ordered by a field."""

    @abstractmethod
    async def delete_document(self, collection: str, document_id: str) -> None:
        """Remove a document. Deleting a missing document is a no-op."""

    @abstractmethod
    async def update_fields(
        self,
        collection: str,
        document_id: str,
        fields: dict
    ) -> None:
        """Overwrite only the given top-level fields.

        Raises:
            KeyError: If the document does not exist.
        """

    async def close(self) -> None:
        """Release any resources held by the store."""
