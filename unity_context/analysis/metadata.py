"""Heuristic structural metadata extraction for C#-style scripts.

This is a pattern scan, not a parser: every field is best-effort and a
missing match simply leaves the field empty.
"""

from __future__ import annotations

import re

from ..models import UnitMetadata

TYPE_DECL_RE = re.compile(r"\b(?:class|struct|interface)\s+(\w+)")
NAMESPACE_RE = re.compile(r"\bnamespace\s+([\w.]+)")
METHOD_RE = re.compile(
    r"\b(?:public|private|protected|internal)\s+"
    r"(?:(?:static|override|virtual|abstract|async|sealed|new|extern|unsafe)\s+)*"
    r"[\w.]+(?:<[\w\s,.<>\[\]]*>)?(?:\[\])?\s+(\w+)\s*\("
)
USING_RE = re.compile(r"^\s*using\s+([\w.]+)\s*;", re.MULTILINE)


def extract_metadata(content: str) -> UnitMetadata:
    """Scan a script for its primary type, namespace, methods and imports."""
    metadata = UnitMetadata()
    if not content:
        return metadata

    type_match = TYPE_DECL_RE.search(content)
    if type_match:
        metadata.primary_type_name = type_match.group(1)

    namespace_match = NAMESPACE_RE.search(content)
    if namespace_match:
        metadata.namespace = namespace_match.group(1)

    metadata.member_names = [m.group(1) for m in METHOD_RE.finditer(content)]
    metadata.imported_dependencies = [m.group(1) for m in USING_RE.finditer(content)]
    return metadata
