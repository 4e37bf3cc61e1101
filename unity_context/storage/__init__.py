"""Vector storage backends."""

from .vector import (InMemoryVectorStore, LanceVectorStore, VectorStore,
                     create_vector_store, where_clause)

__all__ = [
    "InMemoryVectorStore",
    "LanceVectorStore",
    "VectorStore",
    "create_vector_store",
    "where_clause",
]
