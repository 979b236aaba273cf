"""Receiving end of change batches."""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from src.filewatcher.dedup import find_adjacent_duplicates, summarize
from src.filewatcher.models import ChangeBatch, ChangeEvent

from .registry import WatchRegistry
from .violations import ProtocolViolation, ViolationKind

logger = logging.getLogger(__name__)


@dataclass
class AcceptResult:
    """
    Outcome of :meth:`DeliverySink.accept`.
    
    Attributes:
        accepted: Whether the batch was added to the change log
        violations: Protocol violations found in the batch
    """
    accepted: bool
    violations: List[ProtocolViolation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "violations": [
                {"kind": v.kind.value, "message": v.message} for v in self.violations
            ],
        }


class DeliverySink:
    """
    Validates delivered batches and keeps the accepted change log.
    
    Checks, per project:
    - The project is registered
    - The batch timestamp is not below the highest one accepted so far
    - No path has two adjacent CREATE or two adjacent DELETE events
    """

    def __init__(
        self,
        registry: WatchRegistry,
        downstream: Optional[Callable[[ChangeBatch], None]] = None,
    ):
        """
        Args:
            registry: Registry whose lock and recorder are shared
            downstream: Called with every accepted batch
        """
        self.registry = registry
        self.recorder = registry.recorder
        self.downstream = downstream
        self._highest_timestamp: Dict[str, int] = {}
        self._batches: Dict[str, List[ChangeBatch]] = {}

    def accept(self, batch: ChangeBatch) -> AcceptResult:
        """
        Validate a batch and add it to the change log.
        
        Raises:
            ProtocolViolationError: In strict mode, on the first violation
        """
        project_id = batch.project_id
        violations: List[ProtocolViolation] = []

        with self.registry.lock:
            if not self.registry.is_registered(project_id):
                violations.append(self.recorder.record(
                    ViolationKind.UNKNOWN_PROJECT,
                    project_id,
                    f"Batch {batch.batch_timestamp_ms} for a project that is not registered",
                ))
                return AcceptResult(False, violations)

            highest = self._highest_timestamp.get(project_id)
            if highest is not None and batch.batch_timestamp_ms < highest:
                violations.append(self.recorder.record(
                    ViolationKind.OUT_OF_ORDER,
                    project_id,
                    f"Batch timestamp {batch.batch_timestamp_ms} is below {highest}",
                ))

            duplicates = find_adjacent_duplicates(batch.events)
            if duplicates:
                violations.append(self.recorder.record(
                    ViolationKind.DUPLICATE_EVENTS,
                    project_id,
                    f"Adjacent duplicate events for {', '.join(duplicates)}",
                ))

            if violations:
                return AcceptResult(False, violations)

            self._highest_timestamp[project_id] = batch.batch_timestamp_ms
            self._batches.setdefault(project_id, []).append(batch)

        logger.info("Accepted %d event(s) for project %s: %s",
                    len(batch.events), project_id, summarize(batch.events))
        if self.downstream is not None:
            self.downstream(batch)
        return AcceptResult(True)

    def get_batches(self, project_id: str) -> List[ChangeBatch]:
        with self.registry.lock:
            return list(self._batches.get(project_id, []))

    def get_events(self, project_id: str) -> List[ChangeEvent]:
        with self.registry.lock:
            return [e for b in self._batches.get(project_id, []) for e in b.events]

    def highest_timestamp(self, project_id: str) -> Optional[int]:
        with self.registry.lock:
            return self._highest_timestamp.get(project_id)

    @property
    def severe_error_occurred(self) -> bool:
        return self.recorder.has(ViolationKind.OUT_OF_ORDER)

    @property
    def duplicates_detected(self) -> bool:
        return self.recorder.has(ViolationKind.DUPLICATE_EVENTS)

    def clear(self, project_id: Optional[str] = None) -> None:
        """Forget the change log of one project, or of all projects."""
        with self.registry.lock:
            if project_id is None:
                self._batches.clear()
                self._highest_timestamp.clear()
            else:
                self._batches.pop(project_id, None)
                self._highest_timestamp.pop(project_id, None)
