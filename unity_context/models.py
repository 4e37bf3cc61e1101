# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""Data types shared by the indexer, watcher, retrieval engine and style analyzer."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal, Optional

FileType = Literal["script", "scene", "prefab", "asset", "documentation"]
Relevance = Literal["high", "medium", "low"]
StyleCategory = Literal["naming", "formatting", "architecture", "component"]
IntentType = Literal["code-generation", "explanation", "debugging", "optimization", "general"]

HIGH_BAND_THRESHOLD = 0.85
MEDIUM_BAND_THRESHOLD = 0.75
MAX_STYLE_EXAMPLES = 3


def relevance_band(score: float) -> Relevance:
    """Map a similarity score to a coarse relevance band."""
    if score > HIGH_BAND_THRESHOLD:
        return "high"
    if score > MEDIUM_BAND_THRESHOLD:
        return "medium"
    return "low"


@dataclass
class SourceUnit:
    """One file under an indexed root, read fresh for each operation."""

    path: str
    raw_content: str
    size_bytes: int
    modified_at: datetime

    @property
    def name(self) -> str:
        return Path(self.path).name


@dataclass
class UnitMetadata:
    """Best-effort structural summary of a script."""

    primary_type_name: Optional[str] = None
    namespace: Optional[str] = None
    member_names: list[str] = field(default_factory=list)
    imported_dependencies: list[str] = field(default_factory=list)


@dataclass
class ProjectInfo:
    """Identity of an indexed project."""

    name: str
    version: str
    path: str
    render_pipeline: str = "Built-in"
    packages: list[str] = field(default_factory=list)


@dataclass
class IndexedDocument:
    """The unit of storage in the vector store."""

    id: str
    content: str
    project_id: str
    project_name: str
    file_type: FileType
    file_path: str
    language: str
    tool_version: str
    created_at: datetime
    updated_at: datetime
    class_name: Optional[str] = None
    namespace: Optional[str] = None
    methods: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    token_count: int = 0
    embedding: Optional[list[float]] = None

    def to_record(self, vector: Any) -> dict[str, Any]:
        """Flatten into a vector-store row."""
        return {
            "id": self.id,
            "vector": vector,
            "content": self.content,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "file_type": self.file_type,
            "file_path": self.file_path,
            "language": self.language,
            "tool_version": self.tool_version,
            "class_name": self.class_name or "",
            "namespace": self.namespace or "",
            "methods": json.dumps(self.methods),
            "dependencies": json.dumps(self.dependencies),
            "token_count": self.token_count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> "IndexedDocument":
        """Rebuild a document from a vector-store row."""

        def _as_list(value: Any) -> list[str]:
            if isinstance(value, str):
                try:
                    loaded = json.loads(value or "[]")
                except ValueError:
                    return []
                return [str(v) for v in loaded] if isinstance(loaded, list) else []
            return [str(v) for v in (value or [])]

        def _as_datetime(value: Any) -> datetime:
            if isinstance(value, datetime):
                return value
            if isinstance(value, str) and value:
                try:
                    return datetime.fromisoformat(value)
                except ValueError:
                    pass
            return datetime.now()

        vector = row.get("vector")
        if vector is not None and hasattr(vector, "tolist"):
            vector = vector.tolist()

        return cls(
            id=str(row.get("id", "")),
            content=row.get("content", "") or "",
            project_id=row.get("project_id", "") or "",
            project_name=row.get("project_name", "") or "",
            file_type=row.get("file_type", "script") or "script",
            file_path=row.get("file_path", "") or "",
            language=row.get("language", "") or "",
            tool_version=row.get("tool_version", "unknown") or "unknown",
            created_at=_as_datetime(row.get("created_at")),
            updated_at=_as_datetime(row.get("updated_at")),
            class_name=row.get("class_name") or None,
            namespace=row.get("namespace") or None,
            methods=_as_list(row.get("methods")),
            dependencies=_as_list(row.get("dependencies")),
            token_count=int(row.get("token_count") or 0),
            embedding=list(vector) if vector is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("embedding", None)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass
class SearchResult:
    """A retrieved document with its similarity score."""

    document: IndexedDocument
    score: float
    relevance: Relevance

    def to_dict(self) -> dict[str, Any]:
        return {
            "document": self.document.to_dict(),
            "score": self.score,
            "relevance": self.relevance,
        }


@dataclass
class IndexResult:
    """Counters returned by a project indexing run."""

    total_files: int = 0
    indexed: int = 0
    errors: int = 0

    def merge(self, other: "IndexResult") -> None:
        self.total_files += other.total_files
        self.indexed += other.indexed
        self.errors += other.errors

    def to_dict(self) -> dict[str, int]:
        return {"totalFiles": self.total_files, "indexed": self.indexed, "errors": self.errors}


@dataclass
class QueryIntent:
    type: IntentType
    keywords: list[str]
    domain_specific: bool


@dataclass
class ErrorRecord:
    """A previously solved error kept on the user profile."""

    error: str
    solution: str
    timestamp: float = 0.0
    context: str = ""


@dataclass
class HardwareProfile:
    gpu_model: str
    vram_gb: float
    os: str = ""
    cpu: str = ""
    ram: str = ""


@dataclass
class CodeStylePreferences:
    naming_conventions: dict[str, list[str]] = field(default_factory=dict)
    braces_style: str = "new-line"
    indentation: int = 4
    architecture_preferences: list[str] = field(default_factory=list)
    common_components: list[str] = field(default_factory=list)
    error_history: list[ErrorRecord] = field(default_factory=list)


@dataclass
class UserProfile:
    """The subset of persisted user preferences consumed by retrieval."""

    name: str = ""
    experience: str = "intermediate"
    tool_version: str = "6.0"
    hardware: Optional[HardwareProfile] = None
    code_style: Optional[CodeStylePreferences] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UserProfile":
        hardware = None
        hw = data.get("hardware") or {}
        gpu = hw.get("gpu") or {}
        if gpu.get("model"):
            hardware = HardwareProfile(
                gpu_model=str(gpu["model"]),
                vram_gb=float(gpu.get("vram", 0)),
                os=str(hw.get("os", "")),
                cpu=str(hw.get("cpu", "")),
                ram=str(hw.get("ram", "")),
            )

        code_style = None
        cs = data.get("codeStyle")
        if cs:
            formatting = cs.get("formatting") or {}
            code_style = CodeStylePreferences(
                naming_conventions=dict(cs.get("namingConventions") or {}),
                braces_style=formatting.get("bracesStyle", "new-line"),
                indentation=int(formatting.get("indentation", 4)),
                architecture_preferences=list(cs.get("architecturePreferences") or []),
                common_components=list(cs.get("commonComponents") or []),
                error_history=[
                    ErrorRecord(
                        error=str(e.get("error", "")),
                        solution=str(e.get("solution", "")),
                        timestamp=float(e.get("timestamp", 0)),
                        context=str(e.get("context", "")),
                    )
                    for e in cs.get("errorHistory") or []
                ],
            )

        return cls(
            name=str(data.get("name", "")),
            experience=str(data.get("experience", "intermediate")),
            tool_version=str(data.get("unityVersion", "6.0")),
            hardware=hardware,
            code_style=code_style,
        )


@dataclass
class ProjectContext:
    """Description of the project a request is scoped to."""

    id: str
    name: str
    version: str = "unknown"
    render_pipeline: str = "Built-in"
    type: str = "other"
    packages: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectContext":
        packages = []
        for pkg in data.get("packages") or []:
            packages.append(pkg.get("name", "") if isinstance(pkg, dict) else str(pkg))
        return cls(
            id=str(data.get("id") or data.get("path") or ""),
            name=str(data.get("name", "")),
            version=str(data.get("unityVersion", "unknown")),
            render_pipeline=str(data.get("renderPipeline", "Built-in")),
            type=str(data.get("type", "other")),
            packages=packages,
        )


@dataclass
class Message:
    role: str
    content: str


@dataclass
class RAGContext:
    """Assembled context for a downstream generation request."""

    query: str
    retrieved_documents: list[SearchResult]
    conversation_history: list[Message]
    project_context: Optional[ProjectContext]
    user_profile: Optional[UserProfile]
    intent: QueryIntent
    enhanced_prompt: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "intent": asdict(self.intent),
            "retrievedDocuments": [r.to_dict() for r in self.retrieved_documents],
            "enhancedPrompt": self.enhanced_prompt,
        }


@dataclass
class StylePattern:
    category: StyleCategory
    label: str
    occurrence_count: int
    confidence: float
    example_samples: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.example_samples = list(self.example_samples)[:MAX_STYLE_EXAMPLES]
        self.confidence = max(0.0, min(float(self.confidence), 1.0))


@dataclass
class StyleProfile:
    """Confidence-scored conventions observed in one analysis run."""

    patterns: list[StylePattern]
    analyzed_unit_count: int
    overall_confidence: float
    analyzed_at: datetime = field(default_factory=datetime.now)

    def by_category(self, category: StyleCategory) -> list[StylePattern]:
        return [p for p in self.patterns if p.category == category]

    def to_dict(self) -> dict[str, Any]:
        return {
            "patterns": [asdict(p) for p in self.patterns],
            "analyzedUnitCount": self.analyzed_unit_count,
            "overallConfidence": self.overall_confidence,
            "analyzedAt": self.analyzed_at.isoformat(),
        }


@dataclass
class WatchSession:
    id: str
    root_path: str
    is_active: bool = True
