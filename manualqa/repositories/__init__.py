"""Repositories package."""

from manualqa.repositories.base import DocumentStore, validate_embeddings
from manualqa.repositories.documents import SQLDocumentStore
from manualqa.repositories.memory import InMemoryDocumentStore

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "SQLDocumentStore",
    "validate_embeddings",
]
