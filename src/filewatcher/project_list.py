"""Producer side view of the watched projects."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config import WatcherConfig
from .delivery import DeliveryClient
from .diff_engine import DiffEngine
from .exceptions import InvalidPathError, MalformedWatchConfigError
from .fs_watcher import FSWatcherPool
from .models import ChangeType, ProjectWatchConfig, WatchAck
from .paths import denormalize
from .project_watcher import ProjectWatcher
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class ProjectList:
    """
    Applies watch configuration pushed by the hub to the running project watchers.
    
    Full watch lists and incremental push records both go through here. Acks
    are sent on a single background worker so they keep their order without
    blocking the push channel.
    """

    def __init__(
        self,
        store: SnapshotStore,
        delivery: DeliveryClient,
        config: Optional[WatcherConfig] = None,
        client_uuid: Optional[str] = None,
        fs_pool: Optional[FSWatcherPool] = None,
    ):
        """
        Args:
            store: Snapshot store, cleared for deleted projects
            delivery: Client used for batches and acks
            config: Watcher configuration
            client_uuid: Producer instance id put into acks
            fs_pool: Native notification pool; polling only if None
        """
        self.store = store
        self.delivery = delivery
        self.config = config or WatcherConfig()
        self.client_uuid = client_uuid
        self.fs_pool = fs_pool
        self.diff_engine = DiffEngine(store)

        self._watchers: Dict[str, ProjectWatcher] = {}
        self._lock = threading.RLock()
        self._ack_lock = threading.Lock()
        self._ack_executor: Optional[ThreadPoolExecutor] = None

    # ── Acks ───────────────────────────────────────────────────────

    def _send_ack(self, ack: WatchAck) -> None:
        with self._ack_lock:
            # Recreated after stop_all() so a restarted process can ack again
            if self._ack_executor is None:
                self._ack_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="WatchAck")
            self._ack_executor.submit(self.delivery.send_watch_ack, ack)

    def _reject(self, config: ProjectWatchConfig, reason: str) -> None:
        logger.error("Rejecting watch %s of project %s: %s",
                     config.watch_state_id, config.project_id, reason)
        if config.watch_state_id is None:
            return
        self._send_ack(WatchAck(
            project_id=config.project_id,
            watch_state_id=config.watch_state_id,
            success=False,
            client_uuid=self.client_uuid,
        ))

    # ── Changes ────────────────────────────────────────────────────

    def apply_watch_change(self, change_type: ChangeType, config: ProjectWatchConfig) -> None:
        """
        Apply one pushed configuration record.
        
        Args:
            change_type: add, update or delete
            config: The project configuration (only the id for deletes)
        """
        if change_type is ChangeType.DELETE:
            self.remove_project(config.project_id)
        else:
            self.add_or_update_project(config)

    def apply_watchlist(self, configs: Iterable[ProjectWatchConfig]) -> None:
        """
        Reconcile with a full watch list: projects missing from it are removed,
        the rest are added or updated.
        """
        configs = list(configs)
        wanted = {c.project_id for c in configs}
        with self._lock:
            removed = {
                project_id: self._watchers.pop(project_id)
                for project_id in list(self._watchers)
                if project_id not in wanted
            }
        # Observers are stopped outside the lock; their dispatch threads call on_native_event()
        for project_id, watcher in removed.items():
            logger.info("Project %s is no longer in the watch list", project_id)
            self._stop_watcher(project_id, watcher)
        for config in configs:
            self.add_or_update_project(config)

    def add_or_update_project(self, config: ProjectWatchConfig) -> None:
        with self._lock:
            watcher = self._watchers.get(config.project_id)
            if watcher is None:
                self._add_project(config)
                return

            if watcher.config.watch_state_id == config.watch_state_id:
                logger.debug("Project %s already at watch %s", config.project_id, config.watch_state_id)
                return
            try:
                watcher.update_config(config)
            except MalformedWatchConfigError as e:
                self._reject(config, str(e))

    def _add_project(self, config: ProjectWatchConfig) -> None:
        try:
            root = Path(denormalize(config.local_root))
            watcher = ProjectWatcher(
                config,
                self.diff_engine,
                self.delivery,
                watcher_config=self.config,
                on_ack=self._send_ack,
                client_uuid=self.client_uuid,
            )
        except (InvalidPathError, MalformedWatchConfigError) as e:
            self._reject(config, str(e))
            return

        self._watchers[config.project_id] = watcher
        watcher.start()
        if self.fs_pool is not None and self.config.native_events:
            self.fs_pool.start_watching(config.project_id, root)
        logger.info("Watching project %s at %s", config.project_id, config.local_root)

    def remove_project(self, project_id: str) -> bool:
        """
        Stop watching a project and forget its snapshot.
        
        Returns:
            True if the project was being watched
        """
        with self._lock:
            watcher = self._watchers.pop(project_id, None)
        if watcher is None:
            return False
        self._stop_watcher(project_id, watcher)
        return True

    def _stop_watcher(self, project_id: str, watcher: ProjectWatcher) -> None:
        if self.fs_pool is not None:
            self.fs_pool.stop_watching(project_id)
        watcher.stop()
        self.store.delete(project_id)
        logger.info("Stopped watching project %s", project_id)

    # ── Queries ────────────────────────────────────────────────────

    def on_native_event(self, project_id: str, path: str) -> None:
        """Wake a project watcher after an OS notification under its root."""
        with self._lock:
            watcher = self._watchers.get(project_id)
        if watcher is not None:
            watcher.wake()

    def get(self, project_id: str) -> Optional[ProjectWatcher]:
        with self._lock:
            return self._watchers.get(project_id)

    def project_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._watchers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._watchers)

    def stop_all(self) -> None:
        """Stop every project watcher and the ack worker."""
        with self._lock:
            watchers = list(self._watchers.values())
            self._watchers.clear()
        for watcher in watchers:
            watcher.stop()
        with self._ack_lock:
            executor, self._ack_executor = self._ack_executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
