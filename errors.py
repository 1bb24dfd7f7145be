"""
Domain exceptions raised by the service layer.

Routers translate these into HTTP responses; services never build
HTTPException themselves.
"""

from typing import Dict, List


class NotFoundError(LookupError):
    """Target does not exist or is not visible to the caller."""


class ForbiddenError(PermissionError):
    pass


class DomainRuleError(ValueError):
    """A request that is well-formed but violates a catalog/fleet rule."""


class FeedError(RuntimeError):
    """The external reference feed could not be read."""


class SyncInProgressError(RuntimeError):
    pass


class SyncStageError(RuntimeError):
    """A pipeline stage failed; carries the stage name and counts completed so far."""

    def __init__(self, stage: str, message: str, counts: Dict[str, Dict[str, int]]):
        super().__init__(message)
        self.stage = stage
        self.counts = counts


class DuplicatePreflightError(ValueError):
    def __init__(self, conflicts: Dict[str, List[str]]):
        self.conflicts = conflicts
        parts = [f"{kind}: {', '.join(names)}" for kind, names in sorted(conflicts.items())]
        super().__init__(
            "Local dataset duplicates externally-sourced records ("
            + "; ".join(parts)
            + ")"
        )
