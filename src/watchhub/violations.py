"""Recording of producer protocol violations."""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from src.filewatcher.models import current_time_millis

from .exceptions import ProtocolViolationError

logger = logging.getLogger(__name__)


class ViolationKind(Enum):
    """Invariants a producer can break."""
    OUT_OF_ORDER = "out_of_order"
    DUPLICATE_EVENTS = "duplicate_events"
    ACK_FLIP = "ack_flip"
    UNKNOWN_PROJECT = "unknown_project"


@dataclass(frozen=True)
class ProtocolViolation:
    kind: ViolationKind
    project_id: str
    message: str
    timestamp_ms: int = field(default_factory=current_time_millis)


class ViolationRecorder:
    """
    Keeps every protocol violation and logs it as severe.
    
    In strict mode the violation is also raised, so a test session aborts
    at the first broken invariant. Production only logs.
    """

    def __init__(self, strict: bool = False):
        self.strict = strict
        self._violations: List[ProtocolViolation] = []
        self._lock = threading.Lock()

    def record(self, kind: ViolationKind, project_id: str, message: str) -> ProtocolViolation:
        """
        Record a violation.
        
        Raises:
            ProtocolViolationError: In strict mode
        """
        violation = ProtocolViolation(kind=kind, project_id=project_id, message=message)
        with self._lock:
            self._violations.append(violation)
        logger.error("SEVERE: %s violation for project %s: %s", kind.value, project_id, message)
        if self.strict:
            raise ProtocolViolationError(violation)
        return violation

    def violations(self, kind: Optional[ViolationKind] = None) -> List[ProtocolViolation]:
        with self._lock:
            if kind is None:
                return list(self._violations)
            return [v for v in self._violations if v.kind is kind]

    def has(self, kind: ViolationKind) -> bool:
        return bool(self.violations(kind))

    def clear(self) -> None:
        with self._lock:
            self._violations.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._violations)
