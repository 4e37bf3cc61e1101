"""Asset and language classification helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

SCRIPT_EXTS = {".cs": "csharp"}
SCENE_EXTS = {".unity"}
PREFAB_EXTS = {".prefab"}


def is_hidden(path: str | Path) -> bool:
    """True when any path component is a dot-file or dot-directory."""
    return any(part.startswith(".") and part not in {".", ".."} for part in Path(path).parts)


def is_script(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SCRIPT_EXTS


def classify_path(path: str | Path) -> Optional[dict[str, str]]:
    """Return ``{"file_type", "language"}`` for recognized assets, else None."""
    ext = Path(path).suffix.lower()
    if ext in SCRIPT_EXTS:
        return {"file_type": "script", "language": SCRIPT_EXTS[ext]}
    if ext in SCENE_EXTS:
        return {"file_type": "scene", "language": "unity"}
    if ext in PREFAB_EXTS:
        return {"file_type": "prefab", "language": "unity"}
    return None
