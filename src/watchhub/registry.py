"""Authoritative watch configuration of every project."""

import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

from src.filewatcher.exceptions import MalformedWatchConfigError
from src.filewatcher.models import (
    ChangeType,
    ProjectWatchConfig,
    WatchAck,
    WatchChange,
    WatchChangedMessage,
    WatchState,
    encode_push_message,
)
from src.filewatcher.path_filter import PathFilter

from .exceptions import ProjectNotFoundError
from .sessions import SessionBroadcaster
from .violations import ViolationKind, ViolationRecorder

logger = logging.getLogger(__name__)


def new_watch_state_id() -> str:
    return uuid.uuid4().hex


@dataclass
class _ProjectEntry:
    config: ProjectWatchConfig
    state: WatchState = WatchState.PENDING_ACK


class WatchRegistry:
    """
    Project id to watch configuration map with acknowledgement tracking.
    
    Every filter or ref path change produces a new watch state id and is
    pushed to the connected producers. A project only reaches WATCHING
    when a producer acknowledges the current id successfully.
    
    The lock is shared with the DeliverySink so the configuration map and
    the change log are guarded together.
    """

    def __init__(
        self,
        broadcaster: Optional[SessionBroadcaster] = None,
        recorder: Optional[ViolationRecorder] = None,
    ):
        self.broadcaster = broadcaster or SessionBroadcaster()
        self.recorder = recorder or ViolationRecorder()
        self.lock = threading.RLock()
        self._projects: Dict[str, _ProjectEntry] = {}
        # project id -> watch state id -> success
        self._acks: Dict[str, Dict[str, bool]] = {}

    def _push(self, change_type: ChangeType, config: ProjectWatchConfig) -> None:
        message = WatchChangedMessage(changes=(WatchChange(change_type, config),))
        sent = self.broadcaster.broadcast(encode_push_message(message))
        logger.debug("Pushed %s of project %s to %d session(s)",
                     change_type.value, config.project_id, sent)

    def register(self, config: ProjectWatchConfig) -> ProjectWatchConfig:
        """
        Add a project or change its filters.
        
        Args:
            config: Desired configuration; its watch state id is ignored
            
        Returns:
            The stored configuration with its current watch state id
            
        Raises:
            MalformedWatchConfigError: If the rules are invalid or the root changes
        """
        if not config.local_root:
            raise MalformedWatchConfigError(f"Project {config.project_id} has no root")
        PathFilter.from_config(config)

        with self.lock:
            entry = self._projects.get(config.project_id)
            if entry is None:
                stored = config.with_watch_state_id(new_watch_state_id())
                self._projects[config.project_id] = _ProjectEntry(stored)
                self._acks[config.project_id] = {}
                change_type = ChangeType.ADD
            else:
                if config.local_root != entry.config.local_root:
                    raise MalformedWatchConfigError(
                        f"Root of project {config.project_id} cannot change"
                    )
                if config.same_filters(entry.config):
                    return entry.config
                stored = config.with_watch_state_id(new_watch_state_id())
                entry.config = stored
                entry.state = WatchState.PENDING_ACK
                change_type = ChangeType.UPDATE

            logger.info("Project %s %s, watch %s pending",
                        config.project_id,
                        "registered" if change_type is ChangeType.ADD else "updated",
                        stored.watch_state_id)
            self._push(change_type, stored)
            return stored

    def unregister(self, project_id: str) -> ProjectWatchConfig:
        """
        Stop watching a project.
        
        Raises:
            ProjectNotFoundError: If the project is not registered
        """
        with self.lock:
            entry = self._projects.pop(project_id, None)
            if entry is None:
                raise ProjectNotFoundError(project_id)
            self._acks.pop(project_id, None)
            logger.info("Project %s unregistered", project_id)
            self._push(ChangeType.DELETE, ProjectWatchConfig(project_id=project_id))
            return entry.config

    def record_ack(self, ack: WatchAck) -> WatchState:
        """
        Apply a producer acknowledgement.
        
        Returns:
            The state of the project after the ack
        """
        with self.lock:
            entry = self._projects.get(ack.project_id)
            if entry is None:
                logger.warning("Ack for unregistered project %s ignored", ack.project_id)
                return WatchState.UNREGISTERED

            acks = self._acks.setdefault(ack.project_id, {})
            previous = acks.get(ack.watch_state_id)
            if previous is not None and previous != ack.success:
                self.recorder.record(
                    ViolationKind.ACK_FLIP,
                    ack.project_id,
                    f"Watch {ack.watch_state_id} acked {previous} then {ack.success}",
                )
                return entry.state
            acks[ack.watch_state_id] = ack.success

            if ack.watch_state_id != entry.config.watch_state_id:
                logger.info("Stale ack %s for project %s ignored", ack.watch_state_id, ack.project_id)
            elif ack.success:
                entry.state = WatchState.WATCHING
                logger.info("Project %s is watched by %s", ack.project_id, ack.client_uuid)
            else:
                logger.error("Producer %s failed to apply watch %s of project %s",
                             ack.client_uuid, ack.watch_state_id, ack.project_id)
            return entry.state

    def get_state(self, project_id: str) -> WatchState:
        with self.lock:
            entry = self._projects.get(project_id)
            return entry.state if entry else WatchState.UNREGISTERED

    def get(self, project_id: str) -> ProjectWatchConfig:
        """
        Raises:
            ProjectNotFoundError: If the project is not registered
        """
        with self.lock:
            entry = self._projects.get(project_id)
            if entry is None:
                raise ProjectNotFoundError(project_id)
            return entry.config

    def get_ack(self, project_id: str, watch_state_id: str) -> Optional[bool]:
        with self.lock:
            return self._acks.get(project_id, {}).get(watch_state_id)

    def is_registered(self, project_id: str) -> bool:
        with self.lock:
            return project_id in self._projects

    def list_projects(self) -> List[ProjectWatchConfig]:
        with self.lock:
            return [e.config for _, e in sorted(self._projects.items())]

    def __len__(self) -> int:
        with self.lock:
            return len(self._projects)
