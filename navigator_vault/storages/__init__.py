"""Document store adapters used by the vault item store."""
from .abstract import DocumentStore
from .memory import MemoryDocumentStore
from .http import HTTPDocumentStore

__all__ = (
    "DocumentStore",
    "MemoryDocumentStore",
    "HTTPDocumentStore",
)
