# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Pytest configuration and shared fixtures for the Unity context tests.
"""

# ruff: noqa: E402
import json
import os
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Use the in-memory vector store during tests to avoid native LanceDB setup
os.environ.setdefault("UNITY_CONTEXT_VECTOR_STUB", "1")

import unity_context.config as uc_config
from unity_context.indexer import ProjectIndexer
from unity_context.source import SourceAccessor
from unity_context.storage.vector import InMemoryVectorStore

DIMENSION = 768

PLAYER_CONTROLLER = """using UnityEngine;
using System.Collections;

namespace MyGame.Player
{
    public class PlayerController : MonoBehaviour
    {
        [SerializeField] private float moveSpeed = 5f;
        private Rigidbody _body;

        private void Awake()
        {
            _body = GetComponent<Rigidbody>();
        }

        public void Move(Vector3 direction)
        {
            _body.velocity = direction * moveSpeed;
        }
    }
}
"""

ENEMY_AI = """using UnityEngine;

public class EnemyAI : MonoBehaviour
{
    public enum EnemyState { Idle, Chase, Attack }
    private EnemyState _state;
    public event System.Action OnDeath;

    private void Update()
    {
        if (_state == EnemyState.Chase)
        {
            Chase();
        }
    }

    private void Chase()
    {
        transform.position += Vector3.forward * Time.deltaTime;
    }
}
"""

GAME_MANAGER = """using UnityEngine;

public class GameManager : MonoBehaviour
{
    private static GameManager instance;

    public static GameManager Instance
    {
        get { return instance; }
    }

    private void Awake()
    {
        instance = this;
    }

    public GameObject CreateEnemy(GameObject prefab)
    {
        return Instantiate(prefab);
    }
}
"""

PROJECT_VERSION = """m_EditorVersion: 2022.3.10f1
m_EditorVersionWithRevision: 2022.3.10f1 (ff3792e53c62)
"""

MANIFEST = {
    "dependencies": {
        "com.unity.render-pipelines.universal": "14.0.8",
        "com.unity.inputsystem": "1.7.0",
    }
}


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir, monkeypatch):
    """Write a config.json for tests and install it as the global config."""
    config_path = temp_dir / "config.json"
    config_data = {
        "server": {"log_level": "DEBUG"},
        "index": {
            "path": str(temp_dir / ".test_index"),
            "backend": "memory",
            "id_scheme": "deterministic",
        },
        "embeddings": {
            "provider": "sentence-transformers",
            "dimension": DIMENSION,
            "concurrency": 2,
            "batch_size": 4,
        },
        "watch": {
            "enabled": True,
            "debounce_seconds": 0.05,
            "prune_deleted": True,
        },
        "admin": {
            "enabled": True,
            "host": "127.0.0.1",
            "port": 8765,
            "api_key": None,
            "allowed_ips": ["127.0.0.1", "testclient"],
        },
    }
    with open(config_path, "w") as f:
        json.dump(config_data, f, indent=2)

    cfg = uc_config.Config(config_path)
    monkeypatch.setattr(uc_config, "_config", cfg)
    yield cfg


def write_unity_project(root: Path, scripts: dict, version: bool = True) -> Path:
    """Lay out a minimal Unity project with the given scripts under Assets/Scripts."""
    scripts_dir = root / "Assets" / "Scripts"
    scripts_dir.mkdir(parents=True, exist_ok=True)
    for rel, content in scripts.items():
        path = scripts_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)

    if version:
        settings = root / "ProjectSettings"
        settings.mkdir(parents=True, exist_ok=True)
        (settings / "ProjectVersion.txt").write_text(PROJECT_VERSION)
    return root


@pytest.fixture
def unity_project(temp_dir):
    """Create a Unity project with three scripts, a scene and a prefab."""
    root = write_unity_project(
        temp_dir / "MyGame",
        {
            "Player/PlayerController.cs": PLAYER_CONTROLLER,
            "Enemies/EnemyAI.cs": ENEMY_AI,
            "GameManager.cs": GAME_MANAGER,
        },
    )
    packages = root / "Packages"
    packages.mkdir()
    (packages / "manifest.json").write_text(json.dumps(MANIFEST))

    (root / "Assets" / "Scenes").mkdir(parents=True)
    (root / "Assets" / "Scenes" / "Main.unity").write_text("%YAML 1.1\n")
    (root / "Assets" / "Prefabs").mkdir(parents=True)
    (root / "Assets" / "Prefabs" / "Enemy.prefab").write_text("%YAML 1.1\n")

    # Generated folders are never indexed
    (root / "Library").mkdir()
    (root / "Library" / "Cached.cs").write_text("public class Cached {}")
    yield root


@pytest.fixture
def dummy_embed_fn():
    """Create a deterministic embedding function for testing."""
    import hashlib

    from numpy.random import default_rng

    def embed_fn(texts):
        embeddings = np.empty((len(texts), DIMENSION), dtype="float32")

        for i, text in enumerate(texts):
            digest = hashlib.sha256(text.encode("utf-8")).digest()
            # Use int from digest to seed a local RNG; avoid global np.random state
            seed_int = int.from_bytes(digest[:8], "big", signed=False)
            rng = default_rng(seed_int)
            embeddings[i] = rng.standard_normal(DIMENSION).astype("float32")

        norms = np.linalg.norm(embeddings, axis=1, keepdims=True)
        embeddings = embeddings / (norms + 1e-8)
        return embeddings

    return embed_fn


@pytest.fixture
def memory_store():
    store = InMemoryVectorStore(DIMENSION)
    yield store
    store.close()


@pytest.fixture
def source(test_config):
    accessor = SourceAccessor(ignore_dirs=test_config.watch_ignore_dirs)
    yield accessor
    accessor.cleanup()


@pytest.fixture
def indexer(source, memory_store, dummy_embed_fn, test_config):
    """Create a ProjectIndexer over the in-memory store."""
    return ProjectIndexer(source, memory_store, dummy_embed_fn, test_config)


@pytest.fixture
def indexed_project(indexer, unity_project, memory_store):
    """Index the sample project once."""
    result = indexer.index_project(unity_project)
    return {
        "indexer": indexer,
        "store": memory_store,
        "project_path": unity_project,
        "result": result,
    }
