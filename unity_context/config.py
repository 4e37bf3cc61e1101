# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Configuration loader for the Unity context service.

Loads configuration from config.json file with fallback to environment variables.
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 768
MAX_UPSERT_BATCH = 100


def _parse_csv_list(raw_value: Optional[str]) -> list[str]:
    """Parse comma-separated environment variable values into a list."""
    if not raw_value:
        return []
    return [item.strip() for item in raw_value.split(",") if item.strip()]


class Config:
    """Configuration manager for the Unity context service."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config.json file. If None, searches in:
                1. ./config.json (current directory)
                2. ~/.unity_context/config.json
                3. Falls back to environment variables
        """
        self.config_data: Dict[str, Any] = {}
        self._load_config(config_path)
        self._validate_embeddings_dimension()

    def _load_config(self, config_path: Optional[Path] = None):
        """Load configuration from file or environment."""
        if config_path:
            if config_path.exists():
                self._load_from_file(config_path)
                return
            logger.info(
                "Config path %s does not exist, using environment variables", config_path
            )
            self._load_from_env()
            return

        local_config = Path("config.json")
        if local_config.exists():
            self._load_from_file(local_config)
            return

        user_config = Path.home() / ".unity_context" / "config.json"
        if user_config.exists():
            self._load_from_file(user_config)
            return

        logger.info("No config.json found, using environment variables")
        self._load_from_env()

    def _validate_embeddings_dimension(self) -> None:
        """Validate the configured embeddings dimension and warn on mismatch."""
        dimension_value = self.get("embeddings.dimension")
        if dimension_value is None:
            self.config_data.setdefault("embeddings", {}).setdefault(
                "dimension", DEFAULT_DIMENSION
            )
            return

        try:
            dimension = int(dimension_value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid embeddings.dimension '%s', defaulting to %s",
                dimension_value,
                DEFAULT_DIMENSION,
            )
            self.config_data.setdefault("embeddings", {})["dimension"] = DEFAULT_DIMENSION
            return

        if dimension != DEFAULT_DIMENSION:
            logger.warning(
                "Configured embeddings.dimension %s differs from default %s. "
                "Ensure the selected embedding model matches this dimension.",
                dimension,
                DEFAULT_DIMENSION,
            )

        self.config_data.setdefault("embeddings", {})["dimension"] = dimension

    def _load_from_file(self, path: Path):
        """Load configuration from JSON file."""
        try:
            with open(path, "r") as f:
                self.config_data = json.load(f)
            logger.info("Loaded configuration from %s", path)
        except Exception as e:
            logger.error("Error loading config from %s: %s", path, e)
            self._load_from_env()

    def _load_from_env(self):
        """Load configuration from environment variables."""
        self.config_data = {
            "server": {
                "log_level": os.getenv("UNITY_CONTEXT_LOG_LEVEL", "INFO"),
            },
            "embeddings": {
                "provider": os.getenv("UNITY_CONTEXT_EMBEDDINGS_PROVIDER", "sentence-transformers"),
                "model": os.getenv("UNITY_CONTEXT_EMBEDDINGS_MODEL"),
                "concurrency": int(os.getenv("UNITY_CONTEXT_EMBED_CONCURRENCY", "4")),
            },
            "index": {
                "path": os.getenv("UNITY_CONTEXT_INDEX_PATH", "~/.unity_context_index"),
                "backend": os.getenv("UNITY_CONTEXT_VECTOR_BACKEND", "lancedb"),
                "id_scheme": os.getenv("UNITY_CONTEXT_ID_SCHEME", "deterministic"),
            },
            "watch": {
                "enabled": os.getenv("UNITY_CONTEXT_WATCH_ENABLED", "true").lower() == "true",
                "debounce_seconds": float(os.getenv("UNITY_CONTEXT_WATCH_DEBOUNCE", "0.5")),
                "prune_deleted": (
                    os.getenv("UNITY_CONTEXT_WATCH_PRUNE_DELETED", "true").lower() == "true"
                ),
            },
            "security": {
                "allowed_roots": _parse_csv_list(os.getenv("UNITY_CONTEXT_ALLOWED_ROOTS")),
            },
            "projects": self._parse_project_map(os.getenv("UNITY_CONTEXT_PROJECT_MAP", "")),
            "admin": self._load_admin_from_env(),
        }

    def _load_admin_from_env(self) -> Dict[str, Any]:
        """Load admin config from environment variables."""
        allowed_ips_raw = os.getenv("UNITY_CONTEXT_ADMIN_ALLOWED_IPS", "127.0.0.1,::1")
        return {
            "enabled": os.getenv("UNITY_CONTEXT_ADMIN_ENABLED", "true").lower() == "true",
            "host": os.getenv("UNITY_CONTEXT_ADMIN_HOST", "127.0.0.1"),
            "port": int(os.getenv("UNITY_CONTEXT_ADMIN_PORT", "8765")),
            "api_key": os.getenv("UNITY_CONTEXT_ADMIN_API_KEY") or None,
            "allowed_ips": _parse_csv_list(allowed_ips_raw),
        }

    def _parse_project_map(self, project_map_str: str) -> Dict[str, str]:
        """Parse UNITY_CONTEXT_PROJECT_MAP (``name:path;name:path``)."""
        projects = {}
        if not project_map_str:
            return projects

        for entry in project_map_str.split(";"):
            entry = entry.strip()
            if not entry or ":" not in entry:
                continue
            name, path = entry.split(":", 1)
            projects[name.strip()] = path.strip()

        return projects

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key."""
        keys = key.split(".")
        value = self.config_data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
        return value if value is not None else default

    @property
    def log_level(self) -> str:
        return self.get("server.log_level", "INFO")

    @property
    def log_file(self) -> Optional[str]:
        """Get log file path from config or environment."""
        env_log_file = os.getenv("UNITY_CONTEXT_LOG_FILE")
        if env_log_file:
            return env_log_file
        return self.get("server.log_file") or None

    # --- Index / vector store ---

    @property
    def index_path(self) -> Path:
        path_str = self.get("index.path", "~/.unity_context_index")
        return Path(path_str).expanduser().resolve()

    @property
    def lance_dir(self) -> Path:
        """Directory used by LanceDB, defaulting to ``index_path / "lancedb"``."""
        path_str = self.get("index.lance_dir")
        if path_str:
            return Path(path_str).expanduser().resolve()
        return self.index_path / "lancedb"

    @property
    def vector_backend(self) -> str:
        """Vector store backend: ``lancedb`` or ``memory``."""
        if os.getenv("UNITY_CONTEXT_VECTOR_STUB", "").lower() == "1":
            return "memory"
        return str(self.get("index.backend", "lancedb")).lower()

    @property
    def vector_table_name(self) -> str:
        return self.get("index.table", "unity_knowledge_base")

    @property
    def index_batch_size(self) -> int:
        """Records per upsert call, clamped to the store limit."""
        try:
            value = int(self.get("index.batch_size", MAX_UPSERT_BATCH))
        except (TypeError, ValueError):
            return MAX_UPSERT_BATCH
        return max(1, min(value, MAX_UPSERT_BATCH))

    @property
    def id_scheme(self) -> str:
        scheme = str(self.get("index.id_scheme", "deterministic")).lower()
        if scheme not in {"deterministic", "random"}:
            logger.warning("Unknown index.id_scheme '%s', using deterministic", scheme)
            return "deterministic"
        return scheme

    @property
    def chunk_max_size(self) -> int:
        return int(self.get("index.chunk_max_size", 1000))

    @property
    def scripts_subpath(self) -> str:
        return self.get("index.scripts_subpath", "Assets/Scripts")

    # --- Embeddings ---

    @property
    def embeddings_provider(self) -> Optional[str]:
        """Get embedding provider name."""
        return self.get("embeddings.provider", "sentence-transformers")

    @property
    def embeddings_model(self) -> Optional[str]:
        """Get embedding model name or path."""
        return self.get("embeddings.model")

    @property
    def embeddings_dimension(self) -> int:
        """Get embedding dimension."""
        value = self.get("embeddings.dimension", DEFAULT_DIMENSION)
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid embeddings.dimension '%s', defaulting to %s", value, DEFAULT_DIMENSION
            )
            return DEFAULT_DIMENSION

    @property
    def embeddings_api_key(self) -> Optional[str]:
        """Get embeddings API key (for OpenAI)."""
        api_key = self.get("embeddings.api_key")
        if not api_key:
            api_key = os.getenv("OPENAI_API_KEY")
        return api_key

    @property
    def embeddings_concurrency(self) -> int:
        """Maximum number of embedding batches in flight at once."""
        try:
            return max(1, int(self.get("embeddings.concurrency", 4)))
        except (TypeError, ValueError):
            return 4

    @property
    def embeddings_batch_size(self) -> int:
        """Number of texts sent to the provider per call."""
        try:
            return max(1, int(self.get("embeddings.batch_size", 16)))
        except (TypeError, ValueError):
            return 16

    @property
    def embeddings_kwargs(self) -> dict:
        """Get additional embeddings provider kwargs."""
        embeddings_config = self.get("embeddings", {})
        known_keys = {
            "provider",
            "model",
            "dimension",
            "api_key",
            "concurrency",
            "batch_size",
        }
        return {k: v for k, v in embeddings_config.items() if k not in known_keys}

    # --- Watching ---

    @property
    def watch_enabled(self) -> bool:
        """Get whether file watching is enabled."""
        return self.get("watch.enabled", True)

    @property
    def watch_debounce_seconds(self) -> float:
        """Quiet period before a changed file is re-indexed."""
        return float(self.get("watch.debounce_seconds", 0.5))

    @property
    def watch_prune_deleted(self) -> bool:
        """Whether deleted scripts are removed from the vector store."""
        return self.get("watch.prune_deleted", True)

    @property
    def watch_ignore_dirs(self) -> list[str]:
        """Get directories to ignore when watching."""
        return self.get("watch.ignore_dirs", [
            # Version control
            ".git",
            # Unity generated
            "Library", "Temp", "Obj", "Logs", "UserSettings", "Build", "Builds",
            # IDE
            ".vs", ".vscode", ".idea",
        ])

    # --- Retrieval ---

    @property
    def retrieval_top_k(self) -> int:
        return int(self.get("retrieval.top_k", 5))

    @property
    def retrieval_min_score(self) -> float:
        return float(self.get("retrieval.min_score", 0.7))

    # --- Access control ---

    @property
    def allowed_roots(self) -> list[str]:
        return self.get("security.allowed_roots", [])

    @property
    def projects(self) -> Dict[str, str]:
        return self.get("projects", {})

    # --- Admin API configuration ---

    @property
    def admin_enabled(self) -> bool:
        return self.get("admin.enabled", True)

    @property
    def admin_host(self) -> str:
        return self.get("admin.host", "127.0.0.1")

    @property
    def admin_port(self) -> int:
        return int(self.get("admin.port", 8765))

    @property
    def admin_api_key(self) -> Optional[str]:
        return self.get("admin.api_key")

    @property
    def admin_allowed_ips(self) -> list[str]:
        return self.get("admin.allowed_ips", ["127.0.0.1", "::1"])


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure root logging with a console handler and an optional rotating file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(path, maxBytes=5_000_000, backupCount=3))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=handlers,
        force=True,
    )


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def load_config(config_path: Optional[Path] = None):
    """Load configuration from specified path."""
    global _config
    _config = Config(config_path)
    return _config
