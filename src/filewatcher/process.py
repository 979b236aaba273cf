"""Main watcher process orchestrator."""

import logging
import threading
import uuid
from pathlib import Path
from typing import List, Optional

import httpx

from .backoff import ExponentialBackoff
from .config import WatcherConfig
from .delivery import DeliveryClient
from .exceptions import DeliveryError, WatcherAlreadyRunningError, WatcherNotRunningError
from .fs_watcher import FSWatcherPool
from .project_list import ProjectList
from .push_channel import PushChannelClient
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class WatcherProcess:
    """
    Main orchestrator of the producer.
    
    Coordinates the snapshot store, the delivery client, the project
    watchers, native notifications, the push channel and the periodic
    watch list refresh.
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        db_path: Optional[Path] = None,
        http_client: Optional[httpx.Client] = None,
        push_channel: bool = True,
    ):
        """
        Initialize the watcher process.
        
        Args:
            config: Watcher configuration
            db_path: Path to SQLite database (overrides config.db_path)
            http_client: HTTP client for the hub; created from the config if omitted
            push_channel: Whether to open the websocket push channel
        """
        self.config = config or WatcherConfig()
        if db_path:
            self.config.db_path = db_path
        self.client_uuid = uuid.uuid4().hex

        self._stop_event = threading.Event()
        self._refresh_event = threading.Event()
        self._lock = threading.Lock()
        self._running = False
        self._threads: List[threading.Thread] = []

        self._store = SnapshotStore(self.config.db_path)
        self._delivery = DeliveryClient(self.config, client=http_client, stop_event=self._stop_event)
        self._fs_watcher_pool = FSWatcherPool(self._on_native_event)
        self._projects = ProjectList(
            self._store,
            self._delivery,
            config=self.config,
            client_uuid=self.client_uuid,
            fs_pool=self._fs_watcher_pool,
        )
        self._push_channel: Optional[PushChannelClient] = None
        if push_channel:
            self._push_channel = PushChannelClient(
                self._projects,
                self.config,
                on_connected=self.request_refresh,
                stop_event=self._stop_event,
            )

    def _on_native_event(self, project_id: str, path: str) -> None:
        self._projects.on_native_event(project_id, path)

    @property
    def projects(self) -> ProjectList:
        return self._projects

    def get_project_ids(self) -> List[str]:
        """Ids of the projects currently watched."""
        return self._projects.project_ids()

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def request_refresh(self) -> None:
        """Fetch the full watch list as soon as possible."""
        self._refresh_event.set()

    def refresh_watchlist(self) -> bool:
        """
        Fetch the watch list once and reconcile the project watchers with it.
        
        Returns:
            True if the watch list was fetched
        """
        try:
            configs = self._delivery.fetch_watchlist()
        except DeliveryError as e:
            logger.warning("Watch list refresh failed: %s", e)
            return False
        self._projects.apply_watchlist(configs)
        logger.info("Watch list refreshed: %d project(s)", len(configs))
        return True

    def _refresh_loop(self) -> None:
        """Worker loop that refreshes the watch list periodically or on request."""
        backoff = ExponentialBackoff(
            min_ms=self.config.backoff_min_ms,
            max_ms=self.config.backoff_max_ms,
            factor=self.config.backoff_factor,
            stop_event=self._stop_event,
        )
        while not self._stop_event.is_set():
            if self.refresh_watchlist():
                backoff.reset()
                self._refresh_event.wait(timeout=self.config.refresh_interval_s)
                self._refresh_event.clear()
            elif not backoff.fail_and_wait():
                break

    def _start_threads(self) -> None:
        with self._lock:
            if self._running:
                raise WatcherAlreadyRunningError("Watcher is already running")
            self._running = True
            self._stop_event.clear()
            self._refresh_event.clear()

        self._threads = [threading.Thread(target=self._refresh_loop, name="WatchListRefresh")]
        if self._push_channel is not None:
            self._threads.append(threading.Thread(target=self._push_channel.run, name="PushChannel"))

        for thread in self._threads:
            thread.daemon = True
            thread.start()
        logger.info("Watcher %s started against %s", self.client_uuid, self.config.server_url)

    def start(self) -> None:
        """
        Start the watcher process (blocking).
        
        Blocks until stop() is called.
        
        Raises:
            WatcherAlreadyRunningError: If already running
        """
        self._start_threads()
        try:
            while not self._stop_event.is_set():
                self._stop_event.wait(timeout=0.5)
        except KeyboardInterrupt:
            pass
        finally:
            self._shutdown()

    def start_async(self) -> None:
        """
        Start the watcher process in the background.
        
        Raises:
            WatcherAlreadyRunningError: If already running
        """
        self._start_threads()

    def stop(self) -> None:
        """
        Stop the watcher process gracefully.
        
        Raises:
            WatcherNotRunningError: If the watcher was never started
        """
        if not self.is_running():
            raise WatcherNotRunningError("Watcher is not running")
        self._stop_event.set()
        self._shutdown()

    def _shutdown(self) -> None:
        """Internal shutdown procedure."""
        with self._lock:
            if not self._running:
                return
            self._running = False

        self._stop_event.set()
        self._refresh_event.set()
        if self._push_channel is not None:
            self._push_channel.close()

        self._fs_watcher_pool.stop_all()
        self._projects.stop_all()

        for thread in self._threads:
            if thread.is_alive():
                thread.join(timeout=2.0)
        self._threads.clear()
        logger.info("Watcher %s stopped", self.client_uuid)

    def close(self) -> None:
        """Stop if running and release resources."""
        if self.is_running():
            self.stop()
        else:
            # Watchers may have been started by refresh_watchlist() alone
            self._fs_watcher_pool.stop_all()
            self._projects.stop_all()
        self._delivery.close()
        self._store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
