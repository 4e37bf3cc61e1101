# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Project indexing for the Unity context service.

Scans a Unity project, extracts lightweight script metadata, chunks scripts,
embeds every chunk and writes the resulting documents to the vector store.
Scenes and prefabs are stored as single placeholder documents.
"""

import hashlib
import logging
import secrets
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from time import perf_counter
from typing import Optional

import numpy as np

from .analysis import chunk_script, classify_path, count_tokens, extract_metadata
from .config import Config, get_config
from .embeddings import EmbeddingFn
from .errors import PartialIndexFailure, UpstreamFailure
from .models import IndexedDocument, IndexResult, ProjectInfo
from .source import SourceAccessor
from .storage.vector import VectorStore

logger = logging.getLogger(__name__)

RENDER_PIPELINE_PACKAGES = {
    "com.unity.render-pipelines.universal": "URP",
    "com.unity.render-pipelines.high-definition": "HDRP",
}

SCRIPT_KIND = {"file_type": "script", "language": "csharp"}


def _normalize(path: str | Path) -> str:
    return str(Path(path).expanduser().resolve())


class ProjectIndexer:
    """Writes IndexedDocuments for a project into the vector store."""

    def __init__(
        self,
        source: SourceAccessor,
        store: VectorStore,
        embed_fn: EmbeddingFn,
        config: Optional[Config] = None,
    ):
        self.source = source
        self.store = store
        self.embed_fn = embed_fn
        self.config = config or get_config()
        self.max_chunk_size = self.config.chunk_max_size
        self.batch_size = self.config.index_batch_size
        self.embed_batch_size = self.config.embeddings_batch_size
        self.embed_concurrency = self.config.embeddings_concurrency
        self.id_scheme = self.config.id_scheme

    # --- Project identity ---

    def get_project_info(self, project_path: str | Path) -> ProjectInfo:
        """Resolve name, editor version and render pipeline; never fatal."""
        root = Path(project_path).expanduser().resolve()
        info = ProjectInfo(name=root.name, version="unknown", path=str(root))

        try:
            info.version = self.source.read_project_settings(root)["version"]
        except Exception as exc:
            logger.warning("Failed to read project settings for %s: %s", root, exc)

        try:
            manifest = self.source.read_project_manifest(root)
            info.packages = sorted((manifest.get("dependencies") or {}).keys())
            for package, pipeline in RENDER_PIPELINE_PACKAGES.items():
                if package in info.packages:
                    info.render_pipeline = pipeline
                    break
        except Exception as exc:
            logger.debug("No readable package manifest for %s: %s", root, exc)

        return info

    # --- Ids and document construction ---

    def _id_token(self, project_id: str, file_path: str) -> str:
        if self.id_scheme == "random":
            return secrets.token_hex(6)
        return hashlib.sha1(f"{project_id}:{file_path}".encode("utf-8")).hexdigest()[:12]

    def _prepare_script(self, file_path: str, info: ProjectInfo) -> list[IndexedDocument]:
        """Read, scan and chunk one script. Any failure becomes PartialIndexFailure."""
        try:
            unit = self.source.read_unit(file_path)
            metadata = extract_metadata(unit.raw_content)
            chunks = chunk_script(unit.raw_content, self.max_chunk_size)
        except Exception as exc:
            raise PartialIndexFailure(file_path, str(exc)) from exc

        path = _normalize(file_path)
        kind = classify_path(path) or SCRIPT_KIND
        token = self._id_token(info.path, path)
        now = datetime.now()
        return [
            IndexedDocument(
                id=f"{token}-{unit.name}-chunk-{i}",
                content=chunk,
                project_id=info.path,
                project_name=info.name,
                file_type=kind["file_type"],  # type: ignore[arg-type]
                file_path=path,
                language=kind["language"],
                tool_version=info.version,
                created_at=now,
                updated_at=unit.modified_at,
                class_name=metadata.primary_type_name,
                namespace=metadata.namespace,
                methods=list(metadata.member_names),
                dependencies=list(metadata.imported_dependencies),
                token_count=count_tokens(chunk),
            )
            for i, chunk in enumerate(chunks)
        ]

    def _placeholder_document(self, file_path: str, kind: str, info: ProjectInfo) -> IndexedDocument:
        path = _normalize(file_path)
        name = Path(path).name
        language = (classify_path(path) or {}).get("language", "unity")
        now = datetime.now()
        return IndexedDocument(
            id=f"{self._id_token(info.path, path)}-{name}",
            content=f"Unity {kind}: {name}",
            project_id=info.path,
            project_name=info.name,
            file_type=kind,  # type: ignore[arg-type]
            file_path=path,
            language=language,
            tool_version=info.version,
            created_at=now,
            updated_at=now,
        )

    # --- Embedding and storage ---

    def _embed_batch(self, texts: list[str]) -> np.ndarray:
        try:
            arr = np.asarray(self.embed_fn(texts), dtype="float32")
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure("embedding", str(exc)) from exc
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        if arr.shape[0] != len(texts):
            raise UpstreamFailure(
                "embedding", f"expected {len(texts)} vectors, got {arr.shape[0]}"
            )
        return arr

    def _embed_texts(self, texts: list[str]) -> np.ndarray:
        """Embed texts in provider-sized batches with bounded parallelism."""
        step = self.embed_batch_size
        batches = [texts[i : i + step] for i in range(0, len(texts), step)]
        workers = min(self.embed_concurrency, len(batches))
        if workers <= 1:
            results = [self._embed_batch(b) for b in batches]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(self._embed_batch, batches))

        embeddings = np.vstack(results).astype("float32", copy=False)
        # Normalize embeddings to unit vectors so cosine/dot metrics behave
        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return embeddings / norms

    def _build_records(self, documents: list[IndexedDocument]) -> list[dict]:
        """Embed documents and flatten them into store rows."""
        if not documents:
            return []
        embeddings = self._embed_texts([doc.content for doc in documents])
        return [doc.to_record(vec.tolist()) for doc, vec in zip(documents, embeddings)]

    def _store_documents(self, documents: list[IndexedDocument]) -> None:
        """Embed documents, then upsert them batch after batch."""
        self._upsert_records(self._build_records(documents))

    def _upsert_records(self, records: list[dict]) -> None:
        if not records:
            return

        total_batches = (len(records) + self.batch_size - 1) // self.batch_size
        for n, i in enumerate(range(0, len(records), self.batch_size), start=1):
            batch = records[i : i + self.batch_size]
            try:
                self.store.upsert_batch(batch)
            except UpstreamFailure:
                raise
            except Exception as exc:
                raise UpstreamFailure("vector upsert", str(exc)) from exc
            logger.debug("Stored batch %s/%s (%s records)", n, total_batches, len(batch))

    # --- Public operations ---

    def index_project(self, project_path: str | Path, force: bool = False) -> IndexResult:
        """
        Index an entire Unity project.

        Args:
            project_path: Path to the project root
            force: If True, delete every stored document of the project first

        Returns:
            Counters for discovered, indexed and failed files
        """
        root = Path(project_path).expanduser().resolve()
        logger.info("Starting indexing for project: %s", root)
        start = perf_counter()

        self.source.add_allowed_path(root)
        info = self.get_project_info(root)
        logger.info("Project: %s, Unity %s", info.name, info.version)

        if force:
            logger.info("Force rebuild: clearing stored documents for %s", info.path)
            self.delete_project(root)

        result = IndexResult()
        try:
            result.merge(self._index_scripts(root, info))
            result.merge(self._index_placeholders(root, info, "scene"))
            result.merge(self._index_placeholders(root, info, "prefab"))
        except Exception:
            logger.exception("Indexing failed for %s", root)
            raise

        logger.info(
            "Indexing complete for %s: %s/%s files, %s errors in %.1fs",
            info.name,
            result.indexed,
            result.total_files,
            result.errors,
            perf_counter() - start,
        )
        return result

    def _index_scripts(self, root: Path, info: ProjectInfo) -> IndexResult:
        scripts_dir = root / self.config.scripts_subpath
        paths = self.source.get_script_paths(scripts_dir)
        logger.info("Indexing %s scripts under %s", len(paths), scripts_dir)

        result = IndexResult(total_files=len(paths))
        pending: list[IndexedDocument] = []
        for path in paths:
            try:
                documents = self._prepare_script(path, info)
            except PartialIndexFailure as exc:
                logger.error("%s", exc)
                result.errors += 1
                continue

            if documents:
                result.indexed += 1
                pending.extend(documents)
            if len(pending) >= self.batch_size:
                self._store_documents(pending)
                pending = []

        self._store_documents(pending)
        return result

    def _index_placeholders(self, root: Path, info: ProjectInfo, kind: str) -> IndexResult:
        paths = self.source.get_scenes(root) if kind == "scene" else self.source.get_prefabs(root)
        logger.info("Indexing %s %ss", len(paths), kind)

        result = IndexResult(total_files=len(paths))
        documents = []
        for path in paths:
            try:
                documents.append(self._placeholder_document(path, kind, info))
            except Exception as exc:
                logger.error("Failed to index %s %s: %s", kind, path, exc)
                result.errors += 1
        self._store_documents(documents)
        result.indexed = len(documents)
        return result

    def index_file(
        self,
        project_path: str | Path,
        file_path: str | Path,
        project_info: Optional[ProjectInfo] = None,
    ) -> int:
        """Re-index one script and return the number of documents written.

        With deterministic ids the file's previous chunks are replaced so a
        shorter file does not leave orphaned chunks behind. Embedding happens
        before anything is deleted; a provider failure leaves the stored
        version in place.
        """
        info = project_info or self.get_project_info(project_path)
        documents = self._prepare_script(str(file_path), info)
        records = self._build_records(documents)
        if self.id_scheme == "deterministic":
            self.remove_file(file_path)
        self._upsert_records(records)
        return len(documents)

    def remove_file(self, file_path: str | Path) -> None:
        """Delete every stored document that belongs to ``file_path``."""
        path = _normalize(file_path)
        try:
            self.store.delete_many({"file_path": path})
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure("vector delete", str(exc)) from exc
        logger.info("Removed %s from index", path)

    def delete_project(self, project_path: str | Path) -> None:
        project_id = _normalize(project_path)
        try:
            self.store.delete_many({"project_id": project_id})
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure("vector delete", str(exc)) from exc
        logger.info("Deleted all documents for project: %s", project_id)

    def stats(self) -> dict[str, int]:
        return self.store.stats()
