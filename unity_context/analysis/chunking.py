"""Stateless text chunking utilities."""

from __future__ import annotations

import logging
import re

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 1000

# Zero-width split points so no text is lost between pieces
TYPE_BOUNDARY_RE = re.compile(
    r"(?=^[ \t]*(?:(?:public|private|protected|internal|static|sealed|abstract|partial)\s+)*"
    r"(?:class|struct|interface)\s+\w+)",
    re.MULTILINE,
)
MEMBER_BOUNDARY_RE = re.compile(
    r"(?=^[ \t]*(?:public|private|protected|internal)[ \t]+(?:[\w<>\[\].,]+[ \t]+)+\w+[ \t]*\()",
    re.MULTILINE,
)

_encoding = None
_encoding_failed = False


def _get_encoding():
    global _encoding, _encoding_failed
    if _encoding is None and not _encoding_failed:
        try:
            _encoding = tiktoken.get_encoding("cl100k_base")
        except Exception:
            # The BPE file is downloaded on first use; offline hosts cannot load it.
            logger.debug("tiktoken encoding unavailable; using word counts", exc_info=True)
            _encoding_failed = True
    return _encoding


def count_tokens(s: str) -> int:
    """Count tokens with tiktoken, falling back to a whitespace word count."""
    if not s:
        return 0
    enc = _get_encoding()
    if enc is not None:
        return len(enc.encode(s))
    return max(1, len(s.split()))


def split_sections(content: str) -> list[str]:
    """Split on top-level type declarations, keeping every character."""
    return [piece for piece in TYPE_BOUNDARY_RE.split(content) if piece]


def chunk_script(content: str, max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE) -> list[str]:
    """Split a script into structurally aligned chunks of at most ``max_chunk_size``.

    Sections that fit are emitted as they are. Oversized sections are cut at
    member boundaries and the pieces re-packed greedily. A single member larger
    than the limit is emitted whole.
    """
    chunks: list[str] = []
    if not content:
        return chunks

    for section in split_sections(content):
        if len(section) <= max_chunk_size:
            chunks.append(section.strip())
            continue

        current = ""
        for piece in MEMBER_BOUNDARY_RE.split(section):
            if not piece:
                continue
            if len(current) + len(piece) <= max_chunk_size:
                current += piece
            else:
                if current:
                    chunks.append(current.strip())
                current = piece
        if current:
            chunks.append(current.strip())

    return [chunk for chunk in chunks if chunk]
