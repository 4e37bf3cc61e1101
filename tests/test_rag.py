# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Tests for intent classification, retrieval and context assembly.
"""

from datetime import datetime
from unittest.mock import MagicMock

import numpy as np
import pytest

from unity_context.errors import UpstreamFailure
from unity_context.models import (
    CodeStylePreferences,
    ErrorRecord,
    HardwareProfile,
    IndexedDocument,
    Message,
    ProjectContext,
    UserProfile,
    relevance_band,
)
from unity_context.rag import RAGEngine, classify_intent
from unity_context.storage.vector import InMemoryVectorStore

DIM = 16


def _vector_with_cosine(score):
    """Unit vector whose cosine similarity to e0 equals ``score``."""
    vec = np.zeros(DIM, dtype="float32")
    vec[0] = score
    vec[1] = np.sqrt(1.0 - score**2)
    return vec


def _query_embed(texts):
    out = np.zeros((len(texts), DIM), dtype="float32")
    out[:, 0] = 1.0
    return out


def _doc(doc_id, content, project_id="proj-a", file_type="script"):
    now = datetime(2025, 1, 1)
    return IndexedDocument(
        id=doc_id,
        content=content,
        project_id=project_id,
        project_name=project_id,
        file_type=file_type,
        file_path=f"/projects/{project_id}/{doc_id}.cs",
        language="csharp",
        tool_version="2022.3.10f1",
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def seeded_store():
    store = InMemoryVectorStore(DIM)
    store.upsert_batch(
        [
            _doc("best", "class Best {}").to_record(_vector_with_cosine(0.95)),
            _doc("good", "class Good {}").to_record(_vector_with_cosine(0.80)),
            _doc("fair", "class Fair {}").to_record(_vector_with_cosine(0.72)),
            _doc("poor", "class Poor {}").to_record(_vector_with_cosine(0.50)),
            _doc("other", "class Other {}", project_id="proj-b").to_record(_vector_with_cosine(0.99)),
            _doc("docs", "Rigidbody docs", file_type="documentation").to_record(
                _vector_with_cosine(0.90)
            ),
        ]
    )
    return store


@pytest.fixture
def engine(seeded_store, test_config):
    return RAGEngine(seeded_store, _query_embed, test_config)


@pytest.fixture
def profile():
    return UserProfile(
        name="dev",
        experience="advanced",
        tool_version="6.0",
        hardware=HardwareProfile(gpu_model="RTX 3060", vram_gb=12),
        code_style=CodeStylePreferences(
            naming_conventions={"classes": ["PascalCase"]},
            braces_style="new-line",
            architecture_preferences=["Singleton"],
            error_history=[
                ErrorRecord(
                    error="NullReferenceException",
                    solution="Assign the reference in Awake.",
                    timestamp=1700000000000,
                )
            ],
        ),
    )


@pytest.fixture
def project():
    return ProjectContext(
        id="proj-a",
        name="MyGame",
        version="2022.3.10f1",
        render_pipeline="URP",
        type="3d",
        packages=["com.unity.inputsystem"],
    )


def test_create_query_is_code_generation():
    intent = classify_intent("Create a new enemy AI script")
    assert intent.type == "code-generation"
    assert intent.keywords == ["Create", "new", "enemy", "script"]
    assert intent.domain_specific is False


@pytest.mark.parametrize(
    "query,expected",
    [
        ("Write a fix for this error", "code-generation"),
        ("Why does this error happen?", "explanation"),
        ("what is a coroutine", "explanation"),
        ("my jump is not working", "debugging"),
        ("fix the bug", "debugging"),
        ("make the physics faster", "optimization"),
        ("hello there", "general"),
        ("", "general"),
    ],
)
def test_intent_priority(query, expected):
    assert classify_intent(query).type == expected


def test_domain_vocabulary_sets_flag():
    assert classify_intent("How does Rigidbody interpolation work").domain_specific
    assert classify_intent("use FixedUpdate for physics").domain_specific
    assert not classify_intent("sort a list").domain_specific


def test_relevance_band_boundaries():
    assert relevance_band(0.99) == "high"
    assert relevance_band(0.851) == "high"
    assert relevance_band(0.85) == "medium"
    assert relevance_band(0.76) == "medium"
    assert relevance_band(0.75) == "low"
    assert relevance_band(0.70) == "low"


def test_search_drops_low_scores_and_bands_results(engine):
    results = engine.search("anything", top_k=10, filter={"project_id": "proj-a", "file_type": "script"})

    assert [r.document.id for r in results] == ["best", "good", "fair"]
    assert [r.relevance for r in results] == ["high", "medium", "low"]
    assert results[0].score == pytest.approx(0.95, abs=1e-5)


def test_enhance_scopes_to_project(engine, project):
    context = engine.enhance("Explain the scripts", project_context=project)
    ids = [r.document.id for r in context.retrieved_documents]
    assert "other" not in ids
    assert ids[0] == "best"


def test_enhance_without_project_is_global(engine):
    context = engine.enhance("Explain the scripts")
    assert context.retrieved_documents[0].document.id == "other"
    assert len(context.retrieved_documents) <= 5


def test_enhanced_prompt_sections_in_order(engine, project, profile):
    context = engine.enhance(
        "Create a Unity player controller", project_context=project, user_profile=profile
    )
    prompt = context.enhanced_prompt

    positions = [
        prompt.index("USER PROFILE:"),
        prompt.index("PROJECT CONTEXT:"),
        prompt.index("RELEVANT CODE FROM YOUR PROJECT:"),
        prompt.index("This is a Unity-specific query. Provide Unity 2022.3.10f1 best practices."),
        prompt.index("IMPORTANT: Optimize recommendations for RTX 3060 with 12GB VRAM."),
        prompt.index("USER QUERY:\nCreate a Unity player controller"),
        prompt.index("Generate code matching the user's style:"),
    ]
    assert positions == sorted(positions)
    assert "- Hardware: RTX 3060 (12GB VRAM)" in prompt
    assert '- Preferred Style: ["Singleton"]' in prompt
    assert "- Render Pipeline: URP" in prompt
    assert "[1] /projects/proj-a/best.cs (relevance: high)" in prompt
    assert "- Formatting: new-line braces" in prompt
    assert context.intent.type == "code-generation"


def test_minimal_prompt(engine):
    context = engine.enhance("sort a list")
    assert "USER PROFILE:" not in context.enhanced_prompt
    assert "Unity-specific" not in context.enhanced_prompt
    assert "Generate code matching" not in context.enhanced_prompt
    assert context.enhanced_prompt.rstrip().endswith("USER QUERY:\nsort a list")


def test_unity_query_without_project_defaults_to_unity_6(engine):
    context = engine.enhance("What is a GameObject")
    assert "Provide Unity 6 best practices." in context.enhanced_prompt


def test_history_block_is_optional_and_bounded(engine):
    history = [Message(role="user", content=f"message {i}") for i in range(10)]

    plain = engine.enhance("sort a list", conversation_history=history)
    assert "CONVERSATION HISTORY:" not in plain.enhanced_prompt
    assert plain.conversation_history == history

    with_history = engine.enhance(
        "sort a list",
        conversation_history=history,
        options={"include_history": True, "history_limit": 3},
    )
    prompt = with_history.enhanced_prompt
    assert "CONVERSATION HISTORY:" in prompt
    assert "user: message 9" in prompt
    assert "user: message 7" in prompt
    assert "user: message 6" not in prompt


def test_find_similar_code_filters_scripts(test_config, project):
    store = MagicMock()
    store.query.return_value = []
    engine = RAGEngine(store, _query_embed, test_config)

    engine.find_similar_code("void Update() {}", project_context=project)

    _, top_k, filter = store.query.call_args.args
    assert top_k == 3
    assert filter == {"project_id": "proj-a", "file_type": "script"}


def test_api_documentation_lookup(engine):
    results = engine.get_api_documentation("Rigidbody.AddForce")
    assert [r.document.id for r in results] == ["docs"]


def test_error_history_hit_skips_vector_search(test_config, profile):
    store = MagicMock()
    engine = RAGEngine(store, _query_embed, test_config)

    results = engine.find_error_solution(
        "NullReferenceException: Object reference not set to an instance", profile
    )

    assert len(results) == 1
    result = results[0]
    assert result.document.id == "user-error-history"
    assert result.document.content == "Assign the reference in Awake."
    assert result.score == 1.0
    assert result.relevance == "high"
    assert result.document.created_at.year == 2023
    store.query.assert_not_called()


def test_error_history_miss_searches_documentation(test_config, profile):
    store = MagicMock()
    store.query.return_value = []
    engine = RAGEngine(store, _query_embed, test_config)

    assert engine.find_error_solution("IndexOutOfRangeException", profile) == []
    _, top_k, filter = store.query.call_args.args
    assert top_k == 3
    assert filter == {"file_type": "documentation"}


def test_embedding_failure_propagates(seeded_store, test_config):
    def broken(texts):
        raise TimeoutError("provider timed out")

    engine = RAGEngine(seeded_store, broken, test_config)
    with pytest.raises(UpstreamFailure):
        engine.enhance("Create a script")


def test_store_failure_propagates(test_config):
    store = MagicMock()
    store.query.side_effect = ConnectionError("offline")
    engine = RAGEngine(store, _query_embed, test_config)
    with pytest.raises(UpstreamFailure, match="offline"):
        engine.search("anything")


def test_context_to_dict(engine, project):
    data = engine.enhance("Explain the scripts", project_context=project).to_dict()
    assert data["intent"]["type"] == "explanation"
    assert data["retrievedDocuments"][0]["relevance"] == "high"
    assert "enhancedPrompt" in data


def test_path_style_project_ids_match_stored_roots(test_config, tmp_path):
    root = tmp_path / "MyGame"
    root.mkdir()
    store = MagicMock()
    store.query.return_value = []
    engine = RAGEngine(store, _query_embed, test_config)

    for given in (str(root) + "/", str(root / "Assets" / "..")):
        engine.enhance("Explain the scripts", project_context=ProjectContext.from_dict({"path": given}))
        _, _, filter = store.query.call_args.args
        assert filter == {"project_id": str(root.resolve())}
