# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Sandboxed file access for Unity projects.

Every read, listing and watch is validated against an allow-list of roots.
File-system change notifications come from watchdog observers, one per
watch session.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .analysis.languages import is_hidden
from .errors import AccessDenied
from .models import SourceUnit

logger = logging.getLogger(__name__)

# (path, kind) where kind is "add", "change" or "unlink"
ChangeCallback = Callable[[str, str], None]

EDITOR_VERSION_RE = re.compile(r"m_EditorVersion:\s*(.+)")


class _ChangeHandler(FileSystemEventHandler):
    """Translate watchdog events into (path, kind) callbacks."""

    def __init__(self, accessor: "SourceAccessor", root: Path, callback: ChangeCallback):
        super().__init__()
        self._accessor = accessor
        self._root = root
        self._callback = callback

    def _emit(self, path: Any, kind: str) -> None:
        if isinstance(path, bytes):
            path = path.decode("utf-8", errors="replace")
        path = str(path)
        if self._accessor.is_ignored(path, self._root):
            return
        try:
            self._callback(path, kind)
        except Exception:
            logger.exception("Change callback failed for %s (%s)", path, kind)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, "add")

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, "change")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, "unlink")

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, "unlink")
            self._emit(event.dest_path, "add")


class SourceAccessor:
    """Read, list and watch files below explicitly allowed roots."""

    def __init__(
        self,
        allowed_paths: Optional[Iterable[str | Path]] = None,
        ignore_dirs: Optional[Iterable[str]] = None,
    ):
        self._allowed: set[Path] = set()
        self._lock = threading.RLock()
        self._observers: dict[str, Any] = {}
        self.ignore_dirs = set(ignore_dirs or [])
        for p in allowed_paths or []:
            self.add_allowed_path(p)

    # --- Access control ---

    def add_allowed_path(self, dir_path: str | Path) -> None:
        resolved = Path(dir_path).expanduser().resolve()
        with self._lock:
            self._allowed.add(resolved)

    def is_path_allowed(self, file_path: str | Path) -> bool:
        resolved = Path(file_path).expanduser().resolve()
        with self._lock:
            roots = list(self._allowed)
        return any(resolved == root or root in resolved.parents for root in roots)

    def _check(self, file_path: str | Path) -> Path:
        if not self.is_path_allowed(file_path):
            raise AccessDenied(str(file_path))
        return Path(file_path).expanduser().resolve()

    def is_ignored(self, file_path: str | Path, root: str | Path) -> bool:
        """Dot-files and configured ignore directories are invisible to watchers."""
        try:
            rel = Path(file_path).resolve().relative_to(Path(root).resolve())
        except ValueError:
            rel = Path(file_path)
        if is_hidden(rel):
            return True
        return any(part in self.ignore_dirs for part in rel.parts[:-1])

    # --- Reading ---

    def read_file(self, file_path: str | Path) -> str:
        path = self._check(file_path)
        return path.read_text(encoding="utf-8-sig")

    def write_file(self, file_path: str | Path, content: str) -> None:
        path = self._check(file_path)
        path.write_text(content, encoding="utf-8")

    def file_stats(self, file_path: str | Path) -> dict[str, Any]:
        path = self._check(file_path)
        st = path.stat()
        return {
            "size": st.st_size,
            "modified": datetime.fromtimestamp(st.st_mtime),
            "is_directory": path.is_dir(),
        }

    def read_unit(self, file_path: str | Path) -> SourceUnit:
        """Read a file and its stats into a SourceUnit."""
        content = self.read_file(file_path)
        stats = self.file_stats(file_path)
        return SourceUnit(
            path=str(file_path),
            raw_content=content,
            size_bytes=stats["size"],
            modified_at=stats["modified"],
        )

    # --- Listing ---

    def list_files(
        self,
        dir_path: str | Path,
        recursive: bool = False,
        pattern: Optional[str] = None,
    ) -> list[str]:
        """List files under a directory, optionally filtered by a regex on the name."""
        root = self._check(dir_path)
        if not root.is_dir():
            logger.info("Directory %s does not exist; nothing to list", root)
            return []

        name_re = re.compile(pattern) if pattern else None
        iterator = root.rglob("*") if recursive else root.iterdir()
        files = []
        for p in iterator:
            if not p.is_file():
                continue
            rel_dirs = p.relative_to(root).parts[:-1]
            if any(part in self.ignore_dirs for part in rel_dirs):
                continue
            if name_re is not None and not name_re.search(p.name):
                continue
            files.append(str(p))
        return sorted(files)

    def find_files(self, dir_path: str | Path, regex: str) -> list[str]:
        return self.list_files(dir_path, recursive=True, pattern=regex)

    def get_script_paths(self, dir_path: str | Path) -> list[str]:
        return self.find_files(dir_path, r"\.cs$")

    def get_scripts(self, dir_path: str | Path) -> list[SourceUnit]:
        """Read every script below ``dir_path``; unreadable files are logged and skipped."""
        units = []
        for path in self.get_script_paths(dir_path):
            try:
                units.append(self.read_unit(path))
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable script %s: %s", path, exc)
        return units

    def get_scenes(self, dir_path: str | Path) -> list[str]:
        return self.find_files(dir_path, r"\.unity$")

    def get_prefabs(self, dir_path: str | Path) -> list[str]:
        return self.find_files(dir_path, r"\.prefab$")

    # --- Project descriptors ---

    def read_project_settings(self, project_path: str | Path) -> dict[str, str]:
        """Parse ``ProjectSettings/ProjectVersion.txt`` for the editor version."""
        version_path = Path(project_path) / "ProjectSettings" / "ProjectVersion.txt"
        content = self.read_file(version_path)
        match = EDITOR_VERSION_RE.search(content)
        return {"version": match.group(1).strip() if match else "unknown"}

    def read_project_manifest(self, project_path: str | Path) -> dict[str, Any]:
        manifest_path = Path(project_path) / "Packages" / "manifest.json"
        return json.loads(self.read_file(manifest_path))

    # --- Watching ---

    def watch(self, dir_path: str | Path, callback: ChangeCallback) -> str:
        """Start one watchdog observer for ``dir_path`` and return its session id."""
        root = self._check(dir_path)
        watcher_id = f"watcher-{uuid.uuid4().hex[:12]}"

        observer = Observer()
        observer.daemon = True
        observer.schedule(_ChangeHandler(self, root, callback), str(root), recursive=True)
        observer.start()

        with self._lock:
            self._observers[watcher_id] = observer
        logger.info("Watching %s (%s)", root, watcher_id)
        return watcher_id

    def stop_watch(self, watcher_id: str) -> None:
        with self._lock:
            observer = self._observers.pop(watcher_id, None)
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=5.0)
        logger.info("Stopped watcher %s", watcher_id)

    def cleanup(self) -> None:
        """Stop every observer."""
        with self._lock:
            ids = list(self._observers)
        for watcher_id in ids:
            self.stop_watch(watcher_id)
