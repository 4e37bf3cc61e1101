# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Retrieval-augmented context assembly.

Classifies a query, retrieves nearby documents from the vector store and
builds a single prompt text block from the user profile, the project and
the retrieved code.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .config import Config, get_config
from .embeddings import EmbeddingFn
from .errors import UpstreamFailure
from .models import (
    IndexedDocument,
    Message,
    ProjectContext,
    QueryIntent,
    RAGContext,
    SearchResult,
    UserProfile,
    relevance_band,
)
from .storage.vector import VectorStore

logger = logging.getLogger(__name__)

# Checked in order; the first bucket with a matching phrase wins
INTENT_KEYWORDS = [
    ("code-generation", ("create", "implement", "generate", "write")),
    ("explanation", ("explain", "what is", "how does", "why")),
    ("debugging", ("error", "bug", "fix", "debug", "not working")),
    ("optimization", ("optimize", "performance", "faster", "improve")),
]

STOP_WORDS = frozenset(
    ["the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with"]
)

UNITY_KEYWORDS = (
    "unity",
    "gameobject",
    "monobehaviour",
    "transform",
    "rigidbody",
    "collider",
    "prefab",
    "scene",
    "awake",
    "start",
    "update",
    "fixedupdate",
    "networkbehaviour",
    "rpc",
    "serializefield",
)

DEFAULT_HISTORY_LIMIT = 6


def _project_filter_id(project_id: str) -> str:
    """Stored project ids are resolved root paths; normalize path-like ids to match."""
    if "/" in project_id or "\\" in project_id or project_id.startswith(("~", ".")):
        return str(Path(project_id).expanduser().resolve())
    return project_id


def _timestamp_to_datetime(ts: float) -> datetime:
    if not ts:
        return datetime.now()
    # Profiles exported from the web client store milliseconds
    if ts > 1e11:
        ts = ts / 1000.0
    return datetime.fromtimestamp(ts)


def classify_intent(query: str) -> QueryIntent:
    """Bucket a query by keyword membership. Total over any string."""
    lower = query.lower()

    intent = "general"
    for name, phrases in INTENT_KEYWORDS:
        if any(phrase in lower for phrase in phrases):
            intent = name
            break

    keywords = [
        word for word in re.split(r"\s+", query)
        if len(word) > 2 and word.lower() not in STOP_WORDS
    ]
    domain_specific = any(keyword in lower for keyword in UNITY_KEYWORDS)
    return QueryIntent(type=intent, keywords=keywords, domain_specific=domain_specific)


class RAGEngine:
    """Builds RAGContexts on top of a vector store and an embedding function."""

    def __init__(self, store: VectorStore, embed_fn: EmbeddingFn, config: Optional[Config] = None):
        self.store = store
        self.embed_fn = embed_fn
        self.config = config or get_config()
        self.default_top_k = self.config.retrieval_top_k
        self.min_score = self.config.retrieval_min_score

    def classify_intent(self, query: str) -> QueryIntent:
        return classify_intent(query)

    def _embed_query(self, text: str) -> np.ndarray:
        try:
            arr = np.asarray(self.embed_fn([text]), dtype="float32")
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure("embedding", str(exc)) from exc
        return arr.reshape(-1) if arr.ndim == 1 else arr[0]

    def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        filter: Optional[dict[str, Any]] = None,
        min_score: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Semantic search over the vector store.

        Args:
            query: Natural language or code text
            top_k: Maximum number of neighbours to fetch
            filter: Equality filter on stored fields (e.g. project_id, file_type)
            min_score: Matches below this score are discarded

        Returns:
            Results in descending score order, banded by relevance
        """
        top_k = top_k or self.default_top_k
        threshold = self.min_score if min_score is None else min_score
        vector = self._embed_query(query)

        try:
            rows = self.store.query(vector, top_k, filter or None)
        except UpstreamFailure:
            raise
        except Exception as exc:
            raise UpstreamFailure("vector query", str(exc)) from exc

        results = []
        for row in rows:
            score = float(row.get("score", 0.0))
            if score < threshold:
                continue
            results.append(
                SearchResult(
                    document=IndexedDocument.from_record(row),
                    score=score,
                    relevance=relevance_band(score),
                )
            )
        results.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Search %r returned %s/%s results", query[:80], len(results), len(rows))
        return results

    def _retrieve(
        self,
        query: str,
        project_context: Optional[ProjectContext],
        top_k: int,
        file_type: Optional[str] = None,
    ) -> list[SearchResult]:
        filter: dict[str, Any] = {}
        if project_context is not None:
            filter["project_id"] = _project_filter_id(project_context.id)
        if file_type:
            filter["file_type"] = file_type
        return self.search(query, top_k=top_k, filter=filter)

    def build_context(
        self,
        retrieved: list[SearchResult],
        project_context: Optional[ProjectContext] = None,
        user_profile: Optional[UserProfile] = None,
    ) -> str:
        """Profile summary, then project summary, then retrieved documents."""
        context = ""

        if user_profile is not None:
            context += "USER PROFILE:\n"
            context += f"- Experience: {user_profile.experience}\n"
            context += f"- Unity Version: {user_profile.tool_version}\n"
            if user_profile.hardware is not None:
                hw = user_profile.hardware
                context += f"- Hardware: {hw.gpu_model} ({hw.vram_gb:g}GB VRAM)\n"
            prefs = user_profile.code_style.architecture_preferences if user_profile.code_style else []
            context += f"- Preferred Style: {json.dumps(prefs)}\n\n"

        if project_context is not None:
            context += "PROJECT CONTEXT:\n"
            context += f"- Project: {project_context.name}\n"
            context += f"- Unity Version: {project_context.version}\n"
            context += f"- Render Pipeline: {project_context.render_pipeline}\n"
            context += f"- Type: {project_context.type}\n"
            context += f"- Packages: {', '.join(project_context.packages)}\n\n"

        if retrieved:
            context += "RELEVANT CODE FROM YOUR PROJECT:\n\n"
            for i, result in enumerate(retrieved, start=1):
                context += f"[{i}] {result.document.file_path} (relevance: {result.relevance})\n"
                context += f"{result.document.content}\n\n"
                context += "---\n\n"

        return context

    def enhance(
        self,
        query: str,
        conversation_history: Optional[list[Message]] = None,
        project_context: Optional[ProjectContext] = None,
        user_profile: Optional[UserProfile] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> RAGContext:
        """Classify, retrieve and assemble the prompt for one query."""
        options = options or {}
        history = list(conversation_history or [])

        intent = classify_intent(query)
        retrieved = self._retrieve(
            query, project_context, top_k=int(options.get("top_k") or self.default_top_k)
        )

        prompt = self.build_context(retrieved, project_context, user_profile) + "\n"

        if options.get("include_history") and history:
            limit = int(options.get("history_limit") or DEFAULT_HISTORY_LIMIT)
            prompt += "CONVERSATION HISTORY:\n"
            for message in history[-limit:]:
                prompt += f"{message.role}: {message.content}\n"
            prompt += "\n"

        if intent.domain_specific:
            version = project_context.version if project_context else "6"
            prompt += f"This is a Unity-specific query. Provide Unity {version} best practices.\n\n"

        if user_profile is not None and user_profile.hardware is not None:
            hw = user_profile.hardware
            prompt += (
                f"IMPORTANT: Optimize recommendations for {hw.gpu_model} "
                f"with {hw.vram_gb:g}GB VRAM.\n\n"
            )

        prompt += f"USER QUERY:\n{query}\n\n"

        if intent.type == "code-generation" and user_profile and user_profile.code_style:
            style = user_profile.code_style
            prompt += "Generate code matching the user's style:\n"
            prompt += f"- Naming: {json.dumps(style.naming_conventions)}\n"
            prompt += f"- Formatting: {style.braces_style} braces\n\n"

        logger.info(
            "Enhanced query (intent=%s, retrieved=%s, unity=%s)",
            intent.type,
            len(retrieved),
            intent.domain_specific,
        )
        return RAGContext(
            query=query,
            retrieved_documents=retrieved,
            conversation_history=history,
            project_context=project_context,
            user_profile=user_profile,
            intent=intent,
            enhanced_prompt=prompt,
        )

    def find_similar_code(
        self,
        code_snippet: str,
        project_context: Optional[ProjectContext] = None,
        top_k: int = 3,
    ) -> list[SearchResult]:
        return self._retrieve(
            f"Find similar code: {code_snippet}", project_context, top_k, file_type="script"
        )

    def get_api_documentation(self, api_name: str) -> list[SearchResult]:
        return self.search(
            f"Unity API documentation for {api_name}",
            top_k=3,
            filter={"file_type": "documentation"},
        )

    def find_error_solution(
        self,
        error_message: str,
        user_profile: Optional[UserProfile] = None,
    ) -> list[SearchResult]:
        """Look up a known fix in the profile's error history, then the index."""
        if user_profile is not None and user_profile.code_style is not None:
            lower = error_message.lower()
            for record in user_profile.code_style.error_history:
                if record.error and record.error.lower() in lower:
                    logger.info("Error matched profile history: %s", record.error)
                    when = _timestamp_to_datetime(record.timestamp)
                    document = IndexedDocument(
                        id="user-error-history",
                        content=record.solution,
                        project_id="user-profile",
                        project_name="Error History",
                        file_type="documentation",
                        file_path="error-history",
                        language="text",
                        tool_version=user_profile.tool_version,
                        created_at=when,
                        updated_at=when,
                    )
                    return [SearchResult(document=document, score=1.0, relevance="high")]

        return self.search(
            f"Unity error solution: {error_message}",
            top_k=3,
            filter={"file_type": "documentation"},
        )
