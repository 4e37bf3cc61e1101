# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Exception types raised by the indexing and retrieval core.

A pattern scan that finds nothing is not an error: extractors and analyzers
return empty results instead of raising.
"""

from __future__ import annotations


class UnityContextError(Exception):
    """Base class for all errors raised by this package."""


class AccessDenied(UnityContextError, PermissionError):
    """A path lies outside every allow-listed root."""

    def __init__(self, path: str):
        super().__init__(f"Access denied: {path} is not in allowed paths")
        self.path = path


class NotConfigured(UnityContextError, RuntimeError):
    """A required credential or setting for an external collaborator is missing."""


class UpstreamFailure(UnityContextError, RuntimeError):
    """The embedding provider or the vector store failed."""

    def __init__(self, operation: str, detail: str = ""):
        message = f"{operation} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation


class PartialIndexFailure(UnityContextError):
    """A single file could not be indexed; counted, never fatal to the run."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to index {path}: {reason}")
        self.path = path
        self.reason = reason
