"""Native filesystem notifications via watchdog, used to trigger early diffs."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class FSEventHandler(FileSystemEventHandler):
    """Forwards every watchdog event of one project as a (project id, path) hint."""

    def __init__(self, callback: Callable[[str, str], None], project_id: str):
        super().__init__()
        self.callback = callback
        self.project_id = project_id

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in ("opened", "closed_no_write"):
            return
        self.callback(self.project_id, str(event.src_path))


class FSWatcherPool:
    """
    Manages watchdog observers, one per project.
    
    OS notifications may be dropped or coalesced; they only shorten the time
    until the next diff of the project.
    """

    def __init__(self, callback: Callable[[str, str], None]):
        """
        Args:
            callback: Called with (project_id, native path) for each notification
        """
        self.callback = callback
        self._observers: Dict[str, Observer] = {}
        self._lock = threading.Lock()

    def start_watching(self, project_id: str, root: Path) -> bool:
        """
        Start observing a project root.
        
        Returns:
            True if watching started, False if already watching or the root is missing
        """
        with self._lock:
            if project_id in self._observers:
                return False

            observer = Observer()
            try:
                observer.schedule(FSEventHandler(self.callback, project_id), str(root), recursive=True)
                observer.start()
            except OSError as e:
                logger.warning("Native events unavailable for %s (%s), polling only", root, e)
                return False

            self._observers[project_id] = observer
            return True

    def stop_watching(self, project_id: str) -> bool:
        """
        Stop observing a project.
        
        Returns:
            True if watching stopped, False if not watching
        """
        with self._lock:
            observer = self._observers.pop(project_id, None)
        if observer is None:
            return False
        observer.stop()
        observer.join(timeout=5.0)
        return True

    def stop_all(self) -> int:
        """
        Stop all observers.
        
        Returns:
            Number of observers stopped
        """
        with self._lock:
            observers = list(self._observers.values())
            self._observers.clear()

        for observer in observers:
            observer.stop()
        for observer in observers:
            observer.join(timeout=5.0)
        return len(observers)

    def is_watching(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._observers

    def get_watched_projects(self) -> List[str]:
        with self._lock:
            return list(self._observers.keys())

    def __len__(self) -> int:
        """Return the number of active observers."""
        with self._lock:
            return len(self._observers)
