"""
Placement oracle interfaces.

Goal
Define the placement contract without binding the planner to a particular
scheduler implementation.

Design notes
The planner expects try_place to return one PlacementOutcome per unit, in
submission order. Units must be attempted in the given order. A bound unit
must also be committed to the snapshot through snapshot.bind, so the next
workload of the round sees the consumed capacity.

An oracle may keep private scheduling state. That is why the planner asks the
factory for a fresh oracle every round and never reuses one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from cluster_capacity.cluster.snapshot import ClusterSnapshot
from cluster_capacity.core.types import PlacementUnit


@dataclass(frozen=True)
class PlacementOutcome:
    """
    Result for one unit.

    machine is the machine name when bound.
    reason explains why the unit stayed unbound.
    """

    uid: str
    machine: Optional[str] = None
    reason: str = ""

    @property
    def bound(self) -> bool:
        return self.machine is not None


class PlacementOracle(Protocol):
    """
    Placement oracle expected by the planner.

    Raising from try_place for any reason other than an unplaceable unit is a
    fatal session error. Unplaceable units are reported as unbound outcomes.
    """

    def try_place(
        self,
        snapshot: ClusterSnapshot,
        units: Sequence[PlacementUnit],
    ) -> List[PlacementOutcome]:
        """Attempt every unit in order and report each outcome."""


class OracleFactory(Protocol):
    """
    Create a placement oracle for one round.

    Raise OracleInitError when the oracle cannot be constructed.
    """

    def create(self, snapshot: ClusterSnapshot) -> PlacementOracle:
        """Return a fresh oracle bound to the round's snapshot."""
