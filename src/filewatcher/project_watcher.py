"""Per-project diff and delivery loop."""

import logging
import threading
from typing import Callable, Optional

from .config import WatcherConfig
from .dedup import deduplicate
from .delivery import DeliveryClient
from .diff_engine import DiffEngine
from .exceptions import DeliveryAbortedError, MalformedWatchConfigError
from .models import ChangeBatch, ProjectWatchConfig, WatchAck
from .path_filter import PathFilter

logger = logging.getLogger(__name__)


class ProjectWatcher:
    """
    Runs the diff cycles of one project on a dedicated thread.
    
    A cycle walks the tree, diffs it against the stored snapshot,
    deduplicates the events and blocks until the hub accepted them, so a
    project never has more than one batch in flight. Configuration updates
    are applied between cycles.
    """

    def __init__(
        self,
        config: ProjectWatchConfig,
        diff_engine: DiffEngine,
        delivery: DeliveryClient,
        watcher_config: Optional[WatcherConfig] = None,
        on_ack: Optional[Callable[[WatchAck], None]] = None,
        client_uuid: Optional[str] = None,
    ):
        """
        Args:
            config: Initial project configuration
            diff_engine: Shared diff engine
            delivery: Shared delivery client
            watcher_config: Poll and debounce intervals
            on_ack: Called with the ack of each applied configuration generation
            client_uuid: Producer instance id put into acks
            
        Raises:
            MalformedWatchConfigError: If the ignore rules are invalid
        """
        self.diff_engine = diff_engine
        self.delivery = delivery
        self.watcher_config = watcher_config or WatcherConfig()
        self.on_ack = on_ack
        self.client_uuid = client_uuid

        self._config = config
        self._filter = PathFilter.from_config(config)
        self._pending: Optional[ProjectWatchConfig] = None
        self._needs_ack = True
        self._last_batch_timestamp = 0

        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def project_id(self) -> str:
        return self._config.project_id

    @property
    def config(self) -> ProjectWatchConfig:
        with self._lock:
            return self._pending or self._config

    @property
    def last_batch_timestamp(self) -> int:
        return self._last_batch_timestamp

    def update_config(self, config: ProjectWatchConfig) -> None:
        """
        Queue a new configuration generation for the next cycle boundary.
        
        Raises:
            MalformedWatchConfigError: If the new ignore rules are invalid
        """
        if config.local_root != self._config.local_root:
            raise MalformedWatchConfigError(
                f"Root of project {config.project_id} cannot change "
                f"({self._config.local_root} -> {config.local_root})"
            )
        PathFilter.from_config(config)
        with self._lock:
            self._pending = config
        self.wake()

    def wake(self) -> None:
        """Run the next cycle without waiting for the poll interval."""
        self._wake.set()

    def _apply_pending_config(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is None:
            return
        self._config = pending
        self._filter = PathFilter.from_config(pending)
        self._needs_ack = True
        logger.info(
            "Applied watch %s to project %s", pending.watch_state_id, pending.project_id,
        )

    def _send_ack(self) -> None:
        if self.on_ack is not None and self._config.watch_state_id is not None:
            self.on_ack(WatchAck(
                project_id=self._config.project_id,
                watch_state_id=self._config.watch_state_id,
                success=True,
                client_uuid=self.client_uuid,
            ))
        self._needs_ack = False

    def run_cycle(self) -> Optional[ChangeBatch]:
        """
        Run one diff cycle and deliver its events.
        
        Returns:
            The delivered batch, or None if there was nothing to deliver
            
        Raises:
            DeliveryAbortedError: If the watcher is stopped while delivering
        """
        result = self.diff_engine.diff(self._config, self._filter)
        if not result.events:
            return None

        events = deduplicate(result.events)
        timestamp = max(result.timestamp_ms, self._last_batch_timestamp + 1)
        batch = ChangeBatch(self._config.project_id, timestamp, tuple(events))

        self.delivery.send(batch, stop_event=self._stop_event)
        self._last_batch_timestamp = timestamp
        return batch

    def _loop(self) -> None:
        """Worker loop: apply config, diff, deliver, wait."""
        poll_interval = self.watcher_config.poll_interval_ms / 1000.0
        debounce = self.watcher_config.debounce_ms / 1000.0

        while not self._stop_event.is_set():
            self._apply_pending_config()
            try:
                self.run_cycle()
                # A failed cycle leaves the ack pending
                if self._needs_ack:
                    self._send_ack()
            except DeliveryAbortedError:
                break
            except Exception as e:
                logger.error("Diff cycle of project %s failed: %s", self.project_id, e, exc_info=True)

            if self._wake.wait(timeout=poll_interval):
                self._wake.clear()
                if debounce > 0:
                    self._stop_event.wait(debounce)

    def start(self) -> None:
        """Start the worker thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            name=f"ProjectWatcher-{self.project_id}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> bool:
        """
        Stop the worker thread.
        
        Returns:
            True if the thread ended within the timeout
        """
        self._stop_event.set()
        self._wake.set()
        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        stopped = not self._thread.is_alive()
        if not stopped:
            logger.warning("Watcher of project %s did not stop within %.1fs", self.project_id, timeout)
        self._thread = None
        return stopped

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
