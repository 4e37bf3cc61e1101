"""Pure analysis helpers for chunking, metadata extraction, and asset classification."""

from .chunking import chunk_script, count_tokens, split_sections
from .languages import classify_path, is_hidden, is_script
from .metadata import extract_metadata

__all__ = [
    "chunk_script",
    "count_tokens",
    "split_sections",
    "classify_path",
    "is_hidden",
    "is_script",
    "extract_metadata",
]
