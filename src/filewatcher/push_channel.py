"""Persistent websocket connection receiving watch configuration pushes."""

import logging
import threading
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.sync.client import ClientConnection, connect

from .backoff import ExponentialBackoff
from .config import WatcherConfig
from .exceptions import MalformedMessageError
from .models import DebugMessage, PushMessage, WatchChangedMessage, parse_push_message
from .project_list import ProjectList

logger = logging.getLogger(__name__)

KEEPALIVE_MESSAGE = "{}"


class PushChannelClient:
    """
    Keeps a websocket session to the hub open and applies what it pushes.
    
    Every (re)connect asks for a full watch list refresh, because the hub
    does not replay pushes that happened while the session was down.
    """

    def __init__(
        self,
        project_list: ProjectList,
        config: Optional[WatcherConfig] = None,
        on_connected: Optional[Callable[[], None]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Args:
            project_list: Receives decoded configuration changes
            config: Watcher configuration (URL, keepalive, backoff)
            on_connected: Called after each successful connect
            stop_event: Ends the run loop when set
        """
        self.project_list = project_list
        self.config = config or WatcherConfig()
        self.on_connected = on_connected
        self._stop_event = stop_event or threading.Event()
        self._connection: Optional[ClientConnection] = None
        self._lock = threading.Lock()
        self.connected = threading.Event()

    def handle_message(self, text) -> Optional[PushMessage]:
        """
        Decode and apply one push message.
        
        Returns:
            The decoded message, or None if it was malformed
        """
        try:
            message = parse_push_message(text)
        except MalformedMessageError as e:
            logger.error("Ignoring malformed push message: %s", e)
            return None

        if isinstance(message, WatchChangedMessage):
            for change in message.changes:
                logger.info("Watch %s for project %s", change.change_type.value, change.config.project_id)
                self.project_list.apply_watch_change(change.change_type, change.config)
        elif isinstance(message, DebugMessage):
            logger.info("Debug message from hub: %s", message.msg)
        return message

    def _session(self, connection: ClientConnection) -> None:
        """Receive until the connection closes, sending keepalives when idle."""
        while not self._stop_event.is_set():
            try:
                text = connection.recv(timeout=self.config.keepalive_interval_s)
            except TimeoutError:
                connection.send(KEEPALIVE_MESSAGE)
                continue
            self.handle_message(text)

    def run(self) -> None:
        """Connect, receive and reconnect until the stop event is set."""
        backoff = ExponentialBackoff(
            min_ms=self.config.backoff_min_ms,
            max_ms=self.config.backoff_max_ms,
            factor=self.config.backoff_factor,
            stop_event=self._stop_event,
        )
        url = self.config.websocket_url

        while not self._stop_event.is_set():
            try:
                with connect(url, open_timeout=self.config.connect_timeout_s) as connection:
                    with self._lock:
                        self._connection = connection
                    logger.info("Push channel connected to %s", url)
                    backoff.reset()
                    self.connected.set()
                    if self.on_connected is not None:
                        self.on_connected()
                    self._session(connection)
            except ConnectionClosed as e:
                logger.warning("Push channel closed: %s", e)
            except (OSError, TimeoutError, InvalidHandshake) as e:
                logger.warning("Push channel connect to %s failed: %s", url, e)
            except InvalidURI as e:
                logger.error("Invalid push channel URL %s: %s", url, e)
                return
            finally:
                self.connected.clear()
                with self._lock:
                    self._connection = None

            if self._stop_event.is_set():
                break
            backoff.fail_and_wait()

    def close(self) -> None:
        """Close the current connection so :meth:`run` notices the stop event."""
        with self._lock:
            connection = self._connection
        if connection is not None:
            connection.close()
