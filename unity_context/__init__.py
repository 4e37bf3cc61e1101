"""Unity project indexing and retrieval-augmented context service."""

__version__ = "0.1.0"
