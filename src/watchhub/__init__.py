"""
Watch Hub Package

The consumer side of watchfeed: owns the watch configuration of every
project, pushes configuration changes to connected producers and validates
the change batches they deliver.

Features:
- Watch state ids regenerated on every filter change, acked per generation
- Per-session writer queues for push fan-out
- Batch ordering and duplicate checks with severe violation reporting
"""

from .config import HubConfig

from .exceptions import (
    WatchHubError,
    ProjectNotFoundError,
    ProtocolViolationError,
)

from .violations import ViolationKind, ProtocolViolation, ViolationRecorder
from .sessions import PushSession, SessionBroadcaster
from .registry import WatchRegistry
from .sink import AcceptResult, DeliverySink
from .api_server import create_app, WatchHubService


__all__ = [
    # Config
    "HubConfig",
    # Exceptions
    "WatchHubError",
    "ProjectNotFoundError",
    "ProtocolViolationError",
    # Components
    "ViolationKind",
    "ProtocolViolation",
    "ViolationRecorder",
    "PushSession",
    "SessionBroadcaster",
    "WatchRegistry",
    "AcceptResult",
    "DeliverySink",
    # Server
    "create_app",
    "WatchHubService",
]

__version__ = "0.1.0"
