"""Configuration for the file watcher package."""

from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class WatcherConfig:
    """
    Configuration options for the file watcher.
    
    Attributes:
        server_url: Base URL of the change hub (http or https)
        db_path: Path to the SQLite database holding project snapshots
        poll_interval_ms: Interval between diff cycles of one project
        debounce_ms: Delay between a native filesystem notification and the diff it triggers
        native_events: Whether to use OS notifications to trigger early diffs
        retry_interval_ms: Fixed wait between attempts to deliver the same batch
        connect_timeout_s: Connect timeout of a single HTTP attempt
        read_timeout_s: Read timeout of a single HTTP attempt
        backoff_min_ms: First delay of the exponential backoff
        backoff_factor: Growth factor of the exponential backoff
        backoff_max_ms: Upper bound of the exponential backoff
        keepalive_interval_s: Idle time before a keepalive is sent on the push channel
        refresh_interval_s: Interval of the full watch list refresh
    """
    server_url: str = "http://localhost:9090"
    db_path: Path = field(default_factory=lambda: Path("filewatcher.db"))
    poll_interval_ms: int = 500
    debounce_ms: int = 100
    native_events: bool = True
    retry_interval_ms: int = 100
    connect_timeout_s: float = 10.0
    read_timeout_s: float = 10.0
    backoff_min_ms: int = 500
    backoff_factor: float = 1.5
    backoff_max_ms: int = 30000
    keepalive_interval_s: float = 25.0
    refresh_interval_s: float = 120.0

    def api_url(self, path: str) -> str:
        """Join an API path onto the server URL."""
        return self.server_url.rstrip("/") + "/" + path.lstrip("/")

    @property
    def websocket_url(self) -> str:
        """URL of the push channel endpoint."""
        base = self.server_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return base + "/websockets/file-changes/v1"
