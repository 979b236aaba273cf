"""Data models for the file watcher package."""

import json
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import InvalidPathError, MalformedMessageError, MalformedWatchConfigError
from .paths import normalize

logger = logging.getLogger(__name__)

# Relative path of a project's own root. A DELETE for this path means the
# whole project directory has disappeared.
PROJECT_ROOT_PATH = "/"


def current_time_millis() -> int:
    """Wall clock time in integer milliseconds."""
    return int(time.time() * 1000)


class EventType(Enum):
    """Types of change events."""
    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"


class ChangeType(Enum):
    """Kind of change carried by a pushed watch configuration record."""
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


class WatchState(Enum):
    """Acknowledgement state of a project on the consumer side."""
    UNREGISTERED = "unregistered"
    PENDING_ACK = "pending_ack"
    WATCHING = "watching"


@dataclass(frozen=True)
class SnapshotEntry:
    """
    A filesystem object as last seen by a diff cycle.
    
    Attributes:
        path: Canonical path relative to the project root
        is_directory: Whether the object is a directory
        mod_time_ms: Modification time in milliseconds
    """
    path: str
    is_directory: bool
    mod_time_ms: int


@dataclass(frozen=True)
class ChangeEvent:
    """
    A single classified change to a project file or directory.
    
    Attributes:
        path: Canonical path relative to the project root
        event_type: CREATE, MODIFY or DELETE
        is_directory: Whether the path is a directory (last known type for DELETE)
        timestamp_ms: Time the change was detected, in milliseconds
    """
    path: str
    event_type: EventType
    is_directory: bool = False
    timestamp_ms: int = field(default_factory=current_time_millis)

    def to_dict(self) -> dict:
        """Convert to the wire representation."""
        return {
            "path": self.path,
            "directory": self.is_directory,
            "type": self.event_type.value,
            "timestamp": self.timestamp_ms,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        """Create from the wire representation."""
        return cls(
            path=data["path"],
            event_type=EventType(data["type"]),
            is_directory=bool(data.get("directory", False)),
            timestamp_ms=int(data["timestamp"]),
        )


@dataclass(frozen=True)
class ChangeBatch:
    """
    One delivery unit: the events of a diff cycle for one project.
    
    Attributes:
        project_id: Project the events belong to
        batch_timestamp_ms: Strictly increasing per project and producer
        events: Events in creation order
    """
    project_id: str
    batch_timestamp_ms: int
    events: Tuple[ChangeEvent, ...] = ()

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class RefPath:
    """A file outside the project watched as if it lived at ``target`` inside it."""
    source: str
    target: str

    def to_dict(self) -> dict:
        return {"from": self.source, "to": self.target}

    @classmethod
    def from_dict(cls, data: Any) -> "RefPath":
        if not isinstance(data, dict):
            raise MalformedWatchConfigError(f"refPath must be an object: {data!r}")
        source = data.get("from")
        target = data.get("to")
        if not isinstance(source, str) or not isinstance(target, str) or not source or not target:
            raise MalformedWatchConfigError(f"refPath needs string 'from' and 'to': {data!r}")
        try:
            source = normalize(source)
        except InvalidPathError as e:
            raise MalformedWatchConfigError(f"Invalid refPath source {source!r}: {e}")
        if not source.startswith("/"):
            raise MalformedWatchConfigError(f"refPath source must be absolute: {source!r}")
        return cls(source=source, target=target)


def _string_list(data: dict, key: str) -> Tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise MalformedWatchConfigError(f"'{key}' must be a list of strings")
    return tuple(value)


@dataclass(frozen=True)
class ProjectWatchConfig:
    """
    Watch configuration of one project.
    
    Attributes:
        project_id: Project identifier
        local_root: Canonical absolute path of the project root
        ignored_paths: Glob rules matched against whole project-relative paths
        ignored_filenames: Glob rules matched against each path segment
        ref_paths: External files mapped into the project tree
        watch_state_id: Token of this configuration generation, used for acks
        project_type: Free-form project type label
        creation_time: Project creation time in milliseconds
    """
    project_id: str
    local_root: str = ""
    ignored_paths: Tuple[str, ...] = ()
    ignored_filenames: Tuple[str, ...] = ()
    ref_paths: Tuple[RefPath, ...] = ()
    watch_state_id: Optional[str] = None
    project_type: Optional[str] = None
    creation_time: Optional[int] = None

    def same_filters(self, other: "ProjectWatchConfig") -> bool:
        """Whether the ignore rules and ref paths of both configs are equal."""
        return (
            set(self.ignored_paths) == set(other.ignored_paths)
            and set(self.ignored_filenames) == set(other.ignored_filenames)
            and self.ref_paths == other.ref_paths
        )

    def with_watch_state_id(self, watch_state_id: str) -> "ProjectWatchConfig":
        return replace(self, watch_state_id=watch_state_id)

    def to_dict(self, change_type: Optional[ChangeType] = None) -> dict:
        """
        Convert to the wire representation.
        
        None values and empty ignore lists are omitted. A delete record only
        carries the project id.
        """
        if change_type is ChangeType.DELETE:
            return {"projectID": self.project_id, "changeType": change_type.value}

        data: Dict[str, Any] = {
            "projectID": self.project_id,
            "pathToMonitor": self.local_root,
        }
        if self.ignored_paths:
            data["ignoredPaths"] = list(self.ignored_paths)
        if self.ignored_filenames:
            data["ignoredFilenames"] = list(self.ignored_filenames)
        if self.ref_paths:
            data["refPaths"] = [ref.to_dict() for ref in self.ref_paths]
        if self.watch_state_id is not None:
            data["projectWatchStateId"] = self.watch_state_id
        if self.project_type is not None:
            data["type"] = self.project_type
        if self.creation_time is not None:
            data["projectCreationTime"] = self.creation_time
        if change_type is not None:
            data["changeType"] = change_type.value
        return data

    @classmethod
    def from_dict(cls, data: Any, require_root: bool = True) -> "ProjectWatchConfig":
        """
        Create from the wire representation, validating every field.
        
        Raises:
            MalformedWatchConfigError: If a field is missing or has the wrong shape
        """
        if not isinstance(data, dict):
            raise MalformedWatchConfigError(f"Project record must be an object: {data!r}")

        project_id = data.get("projectID")
        if not isinstance(project_id, str) or not project_id:
            raise MalformedWatchConfigError("Project record is missing 'projectID'")

        local_root = data.get("pathToMonitor")
        if local_root is None and not require_root:
            local_root = ""
        elif not isinstance(local_root, str) or not local_root:
            raise MalformedWatchConfigError(f"Project {project_id} is missing 'pathToMonitor'")
        else:
            try:
                local_root = normalize(local_root)
            except InvalidPathError as e:
                raise MalformedWatchConfigError(f"Project {project_id} has invalid root: {e}")
            if not local_root.startswith("/"):
                raise MalformedWatchConfigError(
                    f"Project {project_id} root must be absolute: {local_root!r}"
                )

        ref_data = data.get("refPaths") or []
        if not isinstance(ref_data, list):
            raise MalformedWatchConfigError(f"Project {project_id} 'refPaths' must be a list")

        watch_state_id = data.get("projectWatchStateId")
        if watch_state_id is not None and not isinstance(watch_state_id, str):
            raise MalformedWatchConfigError(f"Project {project_id} has invalid watch state id")

        creation_time = data.get("projectCreationTime")
        if creation_time is not None and not isinstance(creation_time, int):
            raise MalformedWatchConfigError(f"Project {project_id} has invalid creation time")

        return cls(
            project_id=project_id,
            local_root=local_root,
            ignored_paths=_string_list(data, "ignoredPaths"),
            ignored_filenames=_string_list(data, "ignoredFilenames"),
            ref_paths=tuple(RefPath.from_dict(ref) for ref in ref_data),
            watch_state_id=watch_state_id,
            project_type=data.get("type"),
            creation_time=creation_time,
        )


@dataclass(frozen=True)
class WatchAck:
    """
    Acknowledgement of one watch configuration generation.
    
    Attributes:
        project_id: Project being acknowledged
        watch_state_id: Generation being acknowledged
        success: Whether the producer is now watching with that configuration
        client_uuid: Identifier of the producer instance
    """
    project_id: str
    watch_state_id: str
    success: bool
    client_uuid: Optional[str] = None


# ── Push channel messages ──────────────────────────────────────────


@dataclass(frozen=True)
class WatchChange:
    """One record of a watchChanged push message."""
    change_type: ChangeType
    config: ProjectWatchConfig


@dataclass(frozen=True)
class WatchChangedMessage:
    """Configuration delta pushed to producers."""
    changes: Tuple[WatchChange, ...] = ()
    type: str = "watchChanged"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "projects": [c.config.to_dict(c.change_type) for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "WatchChangedMessage":
        records = data.get("projects")
        if not isinstance(records, list):
            raise MalformedMessageError("watchChanged message has no 'projects' list")

        changes = []
        for record in records:
            try:
                change_type = ChangeType(record.get("changeType"))
                config = ProjectWatchConfig.from_dict(
                    record, require_root=change_type is not ChangeType.DELETE
                )
            except (ValueError, AttributeError, MalformedWatchConfigError) as e:
                logger.error("Dropping malformed project record %r: %s", record, e)
                continue
            changes.append(WatchChange(change_type, config))
        return cls(changes=tuple(changes))


@dataclass(frozen=True)
class DebugMessage:
    """Free text pushed to producers for diagnostics."""
    msg: str
    type: str = "debug"

    def to_dict(self) -> dict:
        return {"type": self.type, "msg": self.msg}

    @classmethod
    def from_dict(cls, data: dict) -> "DebugMessage":
        msg = data.get("msg")
        if not isinstance(msg, str):
            raise MalformedMessageError("debug message has no 'msg' string")
        return cls(msg=msg)


PushMessage = Union[WatchChangedMessage, DebugMessage]

_PUSH_MESSAGE_TYPES = {
    "watchChanged": WatchChangedMessage,
    "debug": DebugMessage,
}


def parse_push_message(text: Union[str, bytes]) -> PushMessage:
    """
    Decode a push channel message into its typed variant.
    
    Raises:
        MalformedMessageError: If the text is not JSON or the type is unknown
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedMessageError(f"Push message is not JSON: {e}")
    if not isinstance(data, dict):
        raise MalformedMessageError("Push message must be a JSON object")

    message_cls = _PUSH_MESSAGE_TYPES.get(data.get("type"))
    if message_cls is None:
        raise MalformedMessageError(f"Unknown push message type: {data.get('type')!r}")
    return message_cls.from_dict(data)


def encode_push_message(message: PushMessage) -> str:
    """Serialize a push message to compact JSON."""
    return json.dumps(message.to_dict(), separators=(",", ":"))


def projects_to_dicts(configs: List[ProjectWatchConfig]) -> List[dict]:
    """Full watch list representation, without change types."""
    return [config.to_dict() for config in configs]
