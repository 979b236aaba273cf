"""HTTP client for delivering change batches and watch acknowledgements."""

import logging
import threading
from typing import Dict, List, Optional

import httpx

from .backoff import ExponentialBackoff
from .codec import encode_events
from .config import WatcherConfig
from .dedup import summarize
from .exceptions import DeliveryAbortedError, DeliveryError, MalformedWatchConfigError
from .models import ChangeBatch, ProjectWatchConfig, WatchAck

logger = logging.getLogger(__name__)


class DeliveryClient:
    """
    Talks to the change hub over HTTP.
    
    Batches are retried at a fixed interval until the hub accepts them.
    They are never dropped, split or reordered, and only one batch per
    project is in flight at a time.
    """

    def __init__(
        self,
        config: Optional[WatcherConfig] = None,
        client: Optional[httpx.Client] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the client.
        
        Args:
            config: Watcher configuration (server URL, timeouts, retry intervals)
            client: HTTP client to use; one is created from the config if omitted
            stop_event: Set during shutdown to abandon retries
        """
        self.config = config or WatcherConfig()
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(self.config.read_timeout_s, connect=self.config.connect_timeout_s),
        )
        self._stop_event = stop_event or threading.Event()
        self._project_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _project_lock(self, project_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._project_locks.get(project_id)
            if lock is None:
                lock = threading.Lock()
                self._project_locks[project_id] = lock
            return lock

    # ── Change batches ─────────────────────────────────────────────

    def send(self, batch: ChangeBatch, stop_event: Optional[threading.Event] = None) -> int:
        """
        Deliver a batch, retrying until the hub answers 2xx.
        
        Args:
            batch: Batch to deliver
            stop_event: Abandons the retries when set; defaults to the client stop event
            
        Returns:
            Number of attempts it took
            
        Raises:
            DeliveryAbortedError: If the stop event is set before the batch is accepted
        """
        url = self.config.api_url(f"/api/v1/projects/{batch.project_id}/file-changes")
        params = {"timestamp": str(batch.batch_timestamp_ms)}
        body = {"msg": encode_events(batch.events)}
        retry_interval = self.config.retry_interval_ms / 1000.0
        stop_event = stop_event or self._stop_event

        with self._project_lock(batch.project_id):
            attempt = 0
            while True:
                attempt += 1
                try:
                    resp = self._client.post(url, params=params, json=body)
                    resp.raise_for_status()
                    logger.info(
                        "Delivered %d event(s) of project %s at %d: %s",
                        len(batch.events), batch.project_id, batch.batch_timestamp_ms,
                        summarize(batch.events),
                    )
                    return attempt
                except httpx.HTTPError as e:
                    logger.warning(
                        "Delivery of project %s batch %d failed (attempt %d): %s",
                        batch.project_id, batch.batch_timestamp_ms, attempt, e,
                    )

                if stop_event.wait(retry_interval) or self._stop_event.is_set():
                    raise DeliveryAbortedError(
                        f"Stopped while delivering batch {batch.batch_timestamp_ms} of {batch.project_id}",
                        project_id=batch.project_id,
                        batch_timestamp_ms=batch.batch_timestamp_ms,
                    )

    # ── Watch acknowledgements ─────────────────────────────────────

    def send_watch_ack(self, ack: WatchAck) -> bool:
        """
        Report whether a watch configuration generation was applied.
        
        Retries with exponential backoff.
        
        Returns:
            True once the hub accepted the ack, False if stopped first
        """
        url = self.config.api_url(
            f"/api/v1/projects/{ack.project_id}/file-changes/{ack.watch_state_id}/status"
        )
        params = {"clientUuid": ack.client_uuid} if ack.client_uuid else {}
        backoff = self._backoff()

        while True:
            try:
                resp = self._client.put(url, params=params, json={"success": ack.success})
                resp.raise_for_status()
                logger.info(
                    "Acked watch %s of project %s (success=%s)",
                    ack.watch_state_id, ack.project_id, ack.success,
                )
                return True
            except httpx.HTTPError as e:
                logger.warning("Ack for project %s failed: %s", ack.project_id, e)
            if not backoff.fail_and_wait():
                return False

    # ── Watch list ─────────────────────────────────────────────────

    def fetch_watchlist(self) -> List[ProjectWatchConfig]:
        """
        Fetch the full current watch list.
        
        Malformed project records are logged and skipped.
        
        Raises:
            DeliveryError: If the request fails or the response is not a watch list
        """
        url = self.config.api_url("/api/v1/projects/watchlist")
        try:
            resp = self._client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise DeliveryError(f"Cannot fetch watch list from {url}: {e}")
        except ValueError as e:
            raise DeliveryError(f"Watch list response is not JSON: {e}")

        records = data.get("projects") if isinstance(data, dict) else None
        if not isinstance(records, list):
            raise DeliveryError("Watch list response has no 'projects' list")

        configs = []
        for record in records:
            try:
                configs.append(ProjectWatchConfig.from_dict(record))
            except MalformedWatchConfigError as e:
                logger.error("Skipping malformed watch list entry: %s", e)
        return configs

    def _backoff(self) -> ExponentialBackoff:
        return ExponentialBackoff(
            min_ms=self.config.backoff_min_ms,
            max_ms=self.config.backoff_max_ms,
            factor=self.config.backoff_factor,
            stop_event=self._stop_event,
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
