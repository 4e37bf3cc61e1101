"""Vector store wrappers around LanceDB (or an in-memory table).

Both stores share the same small surface used by the indexer and the
retrieval engine: batched upsert, filtered nearest-neighbour query,
delete by id, delete by filter, and stats.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import lancedb
import numpy as np

from ..config import MAX_UPSERT_BATCH
from ..errors import UpstreamFailure
from ..schema import get_indexed_document_model

logger = logging.getLogger(__name__)

_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@runtime_checkable
class VectorStore(Protocol):
    def upsert_batch(self, records: list[dict]) -> None:
        ...

    def query(self, vector: Any, top_k: int, filter: Optional[dict] = None) -> list[dict]:
        """Return rows (with a ``score`` key) ordered by descending similarity."""
        ...

    def delete_one(self, id: str) -> None:
        ...

    def delete_many(self, filter: dict) -> None:
        ...

    def stats(self) -> dict[str, int]:
        ...


def _check_batch(records: list[dict]) -> None:
    if len(records) > MAX_UPSERT_BATCH:
        raise ValueError(
            f"Upsert batch of {len(records)} exceeds the {MAX_UPSERT_BATCH}-record limit"
        )


def where_clause(filter: Optional[dict]) -> str:
    """Render an equality filter as a SQL predicate for LanceDB."""
    if not filter:
        return ""
    parts = []
    for key, value in filter.items():
        if not _FIELD_RE.match(key):
            raise ValueError(f"Invalid filter field: {key!r}")
        if isinstance(value, bool):
            parts.append(f"{key} = {str(value).lower()}")
        elif isinstance(value, (int, float)):
            parts.append(f"{key} = {value}")
        else:
            escaped = str(value).replace("'", "''")
            parts.append(f"{key} = '{escaped}'")
    return " AND ".join(parts)


def _clip_score(score: float) -> float:
    return max(0.0, min(1.0, float(score)))


class LanceVectorStore:
    """Persistent store backed by a LanceDB table."""

    def __init__(self, lance_dir: Path, table_name: str, dimension: int):
        self.lance_dir = lance_dir
        self.table_name = table_name
        self.dimension = dimension
        self.lance_dir.mkdir(parents=True, exist_ok=True)
        self._db = lancedb.connect(str(self.lance_dir))
        self._model = get_indexed_document_model(dimension)
        if table_name in set(self._db.table_names()):
            self._table = self._db.open_table(table_name)
        else:
            self._table = self._db.create_table(table_name, schema=self._model)
        logger.info(
            "Opened LanceDB table %s at %s (dim=%s)", table_name, self.lance_dir, dimension
        )

    def upsert_batch(self, records: list[dict]) -> None:
        _check_batch(records)
        if not records:
            return
        try:
            (
                self._table.merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(records)
            )
        except Exception as exc:
            raise UpstreamFailure("vector upsert", str(exc)) from exc

    def query(self, vector: Any, top_k: int, filter: Optional[dict] = None) -> list[dict]:
        vec = np.asarray(vector, dtype="float32")
        try:
            q = self._table.search(vec).metric("cosine")
            where = where_clause(filter)
            if where:
                q = q.where(where, prefilter=True)
            rows = q.limit(top_k).to_list()
        except Exception as exc:
            raise UpstreamFailure("vector query", str(exc)) from exc

        for row in rows:
            distance = float(row.pop("_distance", 1.0))
            row["score"] = _clip_score(1.0 - distance)
        return rows

    def delete_one(self, id: str) -> None:
        try:
            self._table.delete(where_clause({"id": id}))
        except Exception as exc:
            raise UpstreamFailure("vector delete", str(exc)) from exc

    def delete_many(self, filter: dict) -> None:
        if not filter:
            raise ValueError("delete_many requires a non-empty filter")
        try:
            self._table.delete(where_clause(filter))
        except Exception as exc:
            raise UpstreamFailure("vector delete", str(exc)) from exc

    def stats(self) -> dict[str, int]:
        try:
            count = int(self._table.count_rows())
        except Exception as exc:
            raise UpstreamFailure("vector stats", str(exc)) from exc
        return {"count": count, "dimension": self.dimension}

    def close(self) -> None:
        self._table = None
        self._db = None


class InMemoryVectorStore:
    """Lightweight in-memory stand-in for the LanceDB store, used in tests."""

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._rows: dict[str, dict] = {}
        self._lock = threading.RLock()

    def upsert_batch(self, records: list[dict]) -> None:
        _check_batch(records)
        with self._lock:
            for record in records:
                row = dict(record)
                vec = row.get("vector")
                if vec is not None and hasattr(vec, "tolist"):
                    row["vector"] = vec.tolist()
                if row.get("vector") is not None and len(row["vector"]) != self.dimension:
                    raise UpstreamFailure(
                        "vector upsert",
                        f"dimension {len(row['vector'])} != {self.dimension}",
                    )
                self._rows[str(row["id"])] = row

    def _matches(self, row: dict, filter: Optional[dict]) -> bool:
        if not filter:
            return True
        return all(row.get(k) == v for k, v in filter.items())

    def query(self, vector: Any, top_k: int, filter: Optional[dict] = None) -> list[dict]:
        q = np.asarray(vector, dtype="float32")
        q_norm = float(np.linalg.norm(q)) or 1.0
        scored: list[tuple[float, dict]] = []
        with self._lock:
            rows = [dict(r) for r in self._rows.values() if self._matches(r, filter)]
        for row in rows:
            vec = np.asarray(row.get("vector") or [], dtype="float32")
            if vec.shape != q.shape:
                continue
            v_norm = float(np.linalg.norm(vec)) or 1.0
            row["score"] = _clip_score(float(np.dot(vec, q)) / (v_norm * q_norm))
            scored.append((row["score"], row))

        scored.sort(key=lambda x: x[0], reverse=True)
        return [row for _, row in scored[:top_k]]

    def delete_one(self, id: str) -> None:
        with self._lock:
            self._rows.pop(str(id), None)

    def delete_many(self, filter: dict) -> None:
        if not filter:
            raise ValueError("delete_many requires a non-empty filter")
        with self._lock:
            for key in [k for k, r in self._rows.items() if self._matches(r, filter)]:
                del self._rows[key]

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"count": len(self._rows), "dimension": self.dimension}

    def rows(self) -> list[dict]:
        with self._lock:
            return [dict(r) for r in self._rows.values()]

    def close(self) -> None:
        pass


def create_vector_store(config) -> VectorStore:
    """Open the configured vector store backend."""
    if config.vector_backend == "memory":
        logger.info("Using in-memory vector store (dim=%s)", config.embeddings_dimension)
        return InMemoryVectorStore(config.embeddings_dimension)
    return LanceVectorStore(
        config.lance_dir, config.vector_table_name, config.embeddings_dimension
    )
