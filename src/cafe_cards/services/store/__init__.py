"""Hosted document store access."""

from .client import (  # noqa: F401
    AppwriteDocumentStore,
    DocumentStore,
    QueryFilter,
    StoreError,
    new_document_id,
    owner_permissions,
)
from .memory import InMemoryDocumentStore  # noqa: F401
