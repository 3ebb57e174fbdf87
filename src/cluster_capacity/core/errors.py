"""
Error taxonomy.

We separate error types so callers can react correctly.
Example:
ConfigurationError and SyncError abort before any round runs.
MalformedWorkloadError is surfaced before the search begins.
PlacementFailure never leaves a round, it only drives the next trial size.
"""


class CapacityError(Exception):
    """Base class for all capacity planning exceptions."""


class ConfigurationError(CapacityError):
    """Raised when session inputs are invalid or conflicting."""


class SyncError(CapacityError):
    """Raised when the base cluster description is unreadable or malformed."""


class MalformedWorkloadError(CapacityError):
    """Raised when a workload descriptor cannot be resolved to placement units."""


class InvalidTemplateError(CapacityError):
    """Raised when the candidate machine template cannot produce a valid machine."""


class OracleInitError(CapacityError):
    """Raised when a placement oracle cannot be constructed for a round."""


class OracleError(CapacityError):
    """Raised when a placement oracle breaks its contract during a round."""


class PlacementFailure(CapacityError):
    """
    Raised inside a round when a workload has units that could not be bound.

    The planner catches it at the round boundary. It is a search signal, not a
    session error.
    """

    def __init__(self, workload: str, unplaced: list[str], outcome: object | None = None) -> None:
        self.workload = workload
        self.unplaced = unplaced
        self.outcome = outcome
        super().__init__(f"{workload}: {len(unplaced)} unit(s) could not be placed")
