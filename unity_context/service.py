# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Process-level container owning one instance of each collaborator."""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Config, get_config
from .embeddings import EmbeddingFn, embed_fn_from_config
from .indexer import ProjectIndexer
from .rag import RAGEngine
from .source import SourceAccessor
from .storage.vector import VectorStore, create_vector_store
from .style import StyleAnalyzer, StyleTransformer
from .watcher import ProjectWatcher

logger = logging.getLogger(__name__)


@dataclass
class ContextService:
    config: Config
    source: SourceAccessor
    store: VectorStore
    embed_fn: EmbeddingFn
    indexer: ProjectIndexer
    watcher: ProjectWatcher
    rag: RAGEngine
    style_analyzer: StyleAnalyzer
    style_transformer: StyleTransformer

    @classmethod
    def build(
        cls,
        config: Config,
        store: VectorStore,
        embed_fn: EmbeddingFn,
        source: Optional[SourceAccessor] = None,
    ) -> "ContextService":
        """Wire collaborators around an already opened store and embed function."""
        source = source or SourceAccessor(
            allowed_paths=config.allowed_roots, ignore_dirs=config.watch_ignore_dirs
        )
        indexer = ProjectIndexer(source, store, embed_fn, config)
        return cls(
            config=config,
            source=source,
            store=store,
            embed_fn=embed_fn,
            indexer=indexer,
            watcher=ProjectWatcher(indexer, source, config),
            rag=RAGEngine(store, embed_fn, config),
            style_analyzer=StyleAnalyzer(source, config),
            style_transformer=StyleTransformer(),
        )

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "ContextService":
        """Open the configured vector store and embedding provider."""
        config = config or get_config()
        store = create_vector_store(config)
        embed_fn = embed_fn_from_config(config)
        logger.info(
            "Context service ready (backend=%s, id_scheme=%s)",
            config.vector_backend,
            config.id_scheme,
        )
        return cls.build(config, store, embed_fn)

    def close(self) -> None:
        """Stop every watch session and release the store."""
        self.watcher.stop_all()
        self.source.cleanup()
        close = getattr(self.store, "close", None)
        if callable(close):
            close()
        logger.info("Context service closed")
