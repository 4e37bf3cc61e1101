# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Incremental index maintenance for watched Unity projects.

File events are coalesced per path: a burst of saves within the debounce
window produces one re-index, at most one re-index per path is in flight,
and an event arriving while one runs schedules exactly one follow-up.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .analysis.languages import is_script
from .config import Config, get_config
from .indexer import ProjectIndexer
from .models import ProjectInfo, WatchSession
from .source import SourceAccessor

logger = logging.getLogger(__name__)

OnChange = Callable[[str], None]


@dataclass
class _PathState:
    kind: str = "change"
    timer: Optional[threading.Timer] = None
    # Bumped whenever a timer is armed; only the latest timer may run
    generation: int = 0
    running: bool = False
    pending: bool = False


@dataclass
class _Session:
    root: Path
    info: ProjectInfo
    on_change: Optional[OnChange] = None
    id: str = ""
    active: bool = True
    paths: dict[str, _PathState] = field(default_factory=dict)


class ProjectWatcher:
    """Keeps the vector store in step with script edits under watched roots."""

    def __init__(
        self,
        indexer: ProjectIndexer,
        source: SourceAccessor,
        config: Optional[Config] = None,
    ):
        self.indexer = indexer
        self.source = source
        self.config = config or get_config()
        self.debounce_seconds = self.config.watch_debounce_seconds
        self.prune_deleted = self.config.watch_prune_deleted
        self._sessions: dict[str, _Session] = {}
        self._cond = threading.Condition(threading.Lock())

    def watch_project(self, project_path: str | Path, on_change: Optional[OnChange] = None) -> str:
        """Start watching a project and return the session id."""
        root = Path(project_path).expanduser().resolve()
        self.source.add_allowed_path(root)
        session = _Session(root=root, info=self.indexer.get_project_info(root), on_change=on_change)

        session.id = self.source.watch(
            root, lambda path, kind: self._dispatch(session, path, kind)
        )
        with self._cond:
            self._sessions[session.id] = session
        logger.info("Watching project %s for changes (%s)", session.info.name, session.id)
        return session.id

    def stop_watching(self, session_id: str) -> None:
        """Close a watch session. Unknown ids are ignored."""
        with self._cond:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return
            session.active = False
            for path, state in list(session.paths.items()):
                if state.timer is not None:
                    state.timer.cancel()
                    state.timer = None
                if not state.running:
                    del session.paths[path]
            self._cond.notify_all()

        self.source.stop_watch(session_id)
        logger.info("Stopped watching %s", session.root)

    def stop_all(self) -> None:
        with self._cond:
            ids = list(self._sessions)
        for session_id in ids:
            self.stop_watching(session_id)

    def sessions(self) -> list[WatchSession]:
        with self._cond:
            return [
                WatchSession(id=s.id, root_path=str(s.root), is_active=s.active)
                for s in self._sessions.values()
            ]

    def handle_event(self, session_id: str, path: str, kind: str) -> None:
        """Feed one change event into a session, as the file watcher does."""
        with self._cond:
            session = self._sessions.get(session_id)
        if session is None:
            logger.debug("Dropping %s event for unknown session %s", kind, session_id)
            return
        self._dispatch(session, path, kind)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no re-index is scheduled or running."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not any(s.paths for s in self._sessions.values()), timeout
            )

    # --- Event handling ---

    def _dispatch(self, session: _Session, path: str, kind: str) -> None:
        if not session.active or not is_script(path):
            return

        if kind == "unlink":
            logger.info("Script deleted: %s", path)
            if not self.prune_deleted:
                return
        else:
            logger.info("Script %s: %s", "added" if kind == "add" else "changed", path)

        with self._cond:
            state = session.paths.setdefault(path, _PathState())
            state.kind = kind
            if state.running:
                state.pending = True
                return
            self._arm(session, path, state)

    def _arm(self, session: _Session, path: str, state: _PathState) -> None:
        """Replace any scheduled timer for ``path``. Caller holds the lock."""
        if state.timer is not None:
            state.timer.cancel()
        state.generation += 1
        state.timer = self._start_timer(session, path, state.generation)

    def _start_timer(self, session: _Session, path: str, generation: int) -> threading.Timer:
        timer = threading.Timer(
            self.debounce_seconds, self._run, args=(session, path, generation)
        )
        timer.daemon = True
        timer.start()
        return timer

    def _run(self, session: _Session, path: str, generation: int) -> None:
        with self._cond:
            state = session.paths.get(path)
            if state is None or not session.active:
                return
            # A timer that fired before being superseded, or while a run is active
            if state.running or generation != state.generation:
                return
            state.timer = None
            state.running = True
            kind = state.kind

        try:
            self._process(session, path, kind)
        finally:
            with self._cond:
                state.running = False
                if state.pending and session.active:
                    state.pending = False
                    self._arm(session, path, state)
                else:
                    session.paths.pop(path, None)
                self._cond.notify_all()

    def _process(self, session: _Session, path: str, kind: str) -> None:
        try:
            if kind == "unlink":
                self.indexer.remove_file(path)
            else:
                count = self.indexer.index_file(session.root, path, session.info)
                logger.info("Re-indexed %s (%s chunks)", path, count)
        except Exception:
            logger.exception("Failed to update index for %s", path)
            return

        if session.on_change is not None:
            try:
                session.on_change(path)
            except Exception:
                logger.exception("on_change callback failed for %s", path)
