"""Snapshot diffing: turn two observations of a project into change events."""

import logging
import os
import stat
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .models import (
    PROJECT_ROOT_PATH,
    ChangeEvent,
    EventType,
    ProjectWatchConfig,
    RefPath,
    SnapshotEntry,
    current_time_millis,
)
from .path_filter import PathFilter
from .paths import denormalize, is_under, normalize
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


def _mtime_ms(st: os.stat_result) -> int:
    return st.st_mtime_ns // 1_000_000


def walk_tree(root: Path) -> Optional[Dict[str, SnapshotEntry]]:
    """
    Breadth-first walk of a directory tree.
    
    Symbolic links are recorded but not followed. Entries that disappear
    while the walk is running are skipped.
    
    Args:
        root: Native path of the directory to walk
        
    Returns:
        Entries keyed by canonical path relative to ``root``, or None if
        ``root`` is not an existing directory
    """
    try:
        if not root.is_dir():
            return None
    except OSError:
        return None

    entries: Dict[str, SnapshotEntry] = {}
    pending = deque([(str(root), "")])

    while pending:
        directory, relative = pending.popleft()
        try:
            with os.scandir(directory) as it:
                children = list(it)
        except (FileNotFoundError, NotADirectoryError):
            continue
        except OSError as e:
            logger.warning("Cannot list %s: %s", directory, e)
            continue

        for child in children:
            child_relative = f"{relative}/{child.name}"
            try:
                is_directory = child.is_dir(follow_symlinks=False)
                st = child.stat(follow_symlinks=False)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.debug("Cannot stat %s: %s", child.path, e)
                continue

            entries[child_relative] = SnapshotEntry(
                path=child_relative,
                is_directory=is_directory,
                mod_time_ms=_mtime_ms(st),
            )
            if is_directory:
                pending.append((child.path, child_relative))

    return entries


def _ref_path_target(ref: RefPath) -> Optional[str]:
    target = normalize(ref.target).strip("/")
    if not target:
        return None
    return "/" + target


def walk_ref_paths(ref_paths: Iterable[RefPath], local_root: str) -> Dict[str, SnapshotEntry]:
    """
    Stat the source file of each ref path and map it to its target.
    
    Sources inside the project are already covered by the tree walk and are
    ignored, as are directory sources.
    """
    entries: Dict[str, SnapshotEntry] = {}
    for ref in ref_paths:
        if is_under(ref.source, local_root):
            logger.debug("Ignoring ref path %s inside project %s", ref.source, local_root)
            continue
        target = _ref_path_target(ref)
        if target is None:
            logger.warning("Ignoring ref path %s with empty target", ref.source)
            continue
        try:
            st = os.stat(denormalize(ref.source))
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.debug("Cannot stat ref path %s: %s", ref.source, e)
            continue
        if stat.S_ISDIR(st.st_mode):
            logger.debug("Ignoring directory ref path %s", ref.source)
            continue
        entries[target] = SnapshotEntry(path=target, is_directory=False, mod_time_ms=_mtime_ms(st))
    return entries


def walk_project(config: ProjectWatchConfig) -> Optional[Dict[str, SnapshotEntry]]:
    """
    Walk a project root plus its ref paths.
    
    Returns:
        Entries keyed by project-relative canonical path, or None if the
        project root does not exist
    """
    entries = walk_tree(Path(denormalize(config.local_root)))
    if entries is None:
        return None
    entries.update(walk_ref_paths(config.ref_paths, config.local_root))
    return entries


@dataclass
class DiffResult:
    """
    Outcome of one diff cycle.
    
    Attributes:
        project_id: Project that was diffed
        events: Filtered events, added then modified then deleted
        timestamp_ms: Timestamp shared by all events
        seeded: True if this was the first cycle and only seeded the snapshot
        root_exists: Whether the project root exists
    """
    project_id: str
    events: List[ChangeEvent] = field(default_factory=list)
    timestamp_ms: int = 0
    seeded: bool = False
    root_exists: bool = True


class DiffEngine:
    """
    Computes change events by comparing a fresh walk against the stored snapshot.
    
    Native filesystem notifications are never trusted for content: they only
    decide when a diff runs, so dropped or coalesced notifications cannot
    cause missed changes.
    """

    def __init__(
        self,
        store: SnapshotStore,
        clock: Callable[[], int] = current_time_millis,
    ):
        """
        Args:
            store: Snapshot store shared by all projects
            clock: Millisecond clock
        """
        self.store = store
        self.clock = clock

    def diff(
        self,
        config: ProjectWatchConfig,
        path_filter: Optional[PathFilter] = None,
    ) -> DiffResult:
        """
        Run one diff cycle for a project and replace its snapshot.
        
        Args:
            config: Project configuration (root and ref paths)
            path_filter: Ignore rules; defaults to the rules in ``config``
            
        Returns:
            The classified events of this cycle
        """
        project_id = config.project_id
        if path_filter is None:
            path_filter = PathFilter.from_config(config)

        previous = self.store.previous(project_id)
        walk_started = self.clock()
        # mtimes are floored to the millisecond, so a file written during the
        # first millisecond of the walk may carry exactly the start time
        watermark = walk_started - 1
        current = walk_project(config)
        root_exists = current is not None
        if current is None:
            current = {}

        if previous is None:
            self.store.replace(project_id, current.values(), watermark, root_exists)
            logger.info("Seeded snapshot of project %s with %d entries", project_id, len(current))
            return DiffResult(
                project_id=project_id,
                timestamp_ms=walk_started,
                seeded=True,
                root_exists=root_exists,
            )

        added: List[SnapshotEntry] = []
        modified: List[SnapshotEntry] = []
        for path, entry in current.items():
            if entry.mod_time_ms > previous.watermark_ms:
                if path in previous.entries:
                    modified.append(entry)
                else:
                    added.append(entry)

        deleted = [
            entry for path, entry in sorted(previous.entries.items())
            if path not in current
        ]

        timestamp = self.clock()
        events = [ChangeEvent(e.path, EventType.CREATE, e.is_directory, timestamp) for e in added]
        events += [ChangeEvent(e.path, EventType.MODIFY, e.is_directory, timestamp) for e in modified]
        events += [ChangeEvent(e.path, EventType.DELETE, e.is_directory, timestamp) for e in deleted]

        if previous.root_exists and not root_exists:
            logger.info("Root of project %s no longer exists: %s", project_id, config.local_root)
            events.append(ChangeEvent(PROJECT_ROOT_PATH, EventType.DELETE, True, timestamp))

        kept = [e for e in events if not path_filter.is_filtered_out(e.path)]
        if len(kept) != len(events):
            logger.debug("Filtered %d event(s) of project %s", len(events) - len(kept), project_id)

        self.store.replace(project_id, current.values(), watermark, root_exists)

        return DiffResult(
            project_id=project_id,
            events=kept,
            timestamp_ms=timestamp,
            root_exists=root_exists,
        )
