"""
File Watcher Package

The producer side of watchfeed: observes project roots, turns what changed
into ordered, filtered and de-duplicated change batches and delivers them
to the change hub.

Features:
- Snapshot diffing tolerant of unreliable OS notifications
- Canonical path form shared by Windows and POSIX producers
- Glob based ignore rules on whole paths and on path segments
- Contiguous duplicate event collapsing
- Delivery with infinite retry, one batch in flight per project
- Watch configuration pushed over a websocket, acknowledged per generation
"""

from .models import (
    PROJECT_ROOT_PATH,
    EventType,
    ChangeType,
    WatchState,
    SnapshotEntry,
    ChangeEvent,
    ChangeBatch,
    RefPath,
    ProjectWatchConfig,
    WatchAck,
    WatchChange,
    WatchChangedMessage,
    DebugMessage,
    parse_push_message,
    encode_push_message,
    current_time_millis,
)

from .config import WatcherConfig

from .exceptions import (
    FileWatcherError,
    InvalidPathError,
    MalformedWatchConfigError,
    MalformedMessageError,
    SnapshotStoreError,
    DeliveryError,
    DeliveryAbortedError,
    WatcherNotRunningError,
    WatcherAlreadyRunningError,
)

from .paths import normalize, denormalize
from .path_filter import PathFilter
from .snapshot_store import Snapshot, SnapshotStore
from .diff_engine import DiffEngine, DiffResult
from .dedup import deduplicate, remove_duplicate_events_of_type, find_adjacent_duplicates
from .codec import encode_events, decode_events
from .delivery import DeliveryClient
from .project_watcher import ProjectWatcher
from .project_list import ProjectList
from .push_channel import PushChannelClient
from .fs_watcher import FSWatcherPool
from .process import WatcherProcess


__all__ = [
    # Models
    "PROJECT_ROOT_PATH",
    "EventType",
    "ChangeType",
    "WatchState",
    "SnapshotEntry",
    "ChangeEvent",
    "ChangeBatch",
    "RefPath",
    "ProjectWatchConfig",
    "WatchAck",
    "WatchChange",
    "WatchChangedMessage",
    "DebugMessage",
    "parse_push_message",
    "encode_push_message",
    "current_time_millis",
    # Config
    "WatcherConfig",
    # Exceptions
    "FileWatcherError",
    "InvalidPathError",
    "MalformedWatchConfigError",
    "MalformedMessageError",
    "SnapshotStoreError",
    "DeliveryError",
    "DeliveryAbortedError",
    "WatcherNotRunningError",
    "WatcherAlreadyRunningError",
    # Components
    "normalize",
    "denormalize",
    "PathFilter",
    "Snapshot",
    "SnapshotStore",
    "DiffEngine",
    "DiffResult",
    "deduplicate",
    "remove_duplicate_events_of_type",
    "find_adjacent_duplicates",
    "encode_events",
    "decode_events",
    "DeliveryClient",
    "ProjectWatcher",
    "ProjectList",
    "PushChannelClient",
    "FSWatcherPool",
    # Main Process
    "WatcherProcess",
]

__version__ = "0.1.0"
