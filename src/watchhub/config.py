"""Configuration for the watch hub package."""

from dataclasses import dataclass


@dataclass
class HubConfig:
    """
    Configuration options for the watch hub.
    
    Attributes:
        host: Interface the HTTP server binds to
        port: Port the HTTP server listens on
        strict_violations: Raise on protocol violations instead of only logging
            them; meant for test harnesses
    """
    host: str = "127.0.0.1"
    port: int = 9090
    strict_violations: bool = False
