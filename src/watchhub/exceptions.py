"""
Custom exceptions for the watch hub package.
"""


class WatchHubError(Exception):
    """Base exception for watch hub errors."""
    pass


class ProjectNotFoundError(WatchHubError):
    """Project is not registered."""

    def __init__(self, project_id: str):
        super().__init__(f"Project not registered: {project_id}")
        self.project_id = project_id


class ProtocolViolationError(WatchHubError):
    """A producer broke an ordering, deduplication or ack invariant."""

    def __init__(self, violation):
        super().__init__(violation.message)
        self.violation = violation
