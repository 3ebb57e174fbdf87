"""
In memory first fit oracle.

This oracle is used for tests and local simulations. It is not a scheduler:
there is no scoring, no pod affinity and no preemption.

Rules, checked per machine in snapshot order
- node name pin
- node selector labels
- required node affinity (In, NotIn, Exists, DoesNotExist)
- NoSchedule and NoExecute taints must be tolerated
- every requested resource fits in free capacity
  the pods resource is only enforced when the machine declares it

The first machine passing every rule gets the unit. Units that fit nowhere are
reported with the last reason other than a node name mismatch, so a pinned
unit reports why its own machine refused it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from cluster_capacity.cluster.snapshot import ClusterSnapshot
from cluster_capacity.core.matching import NODE_NAME_MISMATCH, constraint_mismatch
from cluster_capacity.core.types import Machine, PlacementUnit
from cluster_capacity.oracle.base import OracleFactory, PlacementOracle, PlacementOutcome

LOGGER = logging.getLogger(__name__)


def rejection_reason(unit: PlacementUnit, machine: Machine, free: Dict[str, int]) -> Optional[str]:
    """Return why machine cannot take unit, or None when it can."""
    mismatch = constraint_mismatch(unit.constraints, machine)
    if mismatch is not None:
        return mismatch

    for resource, amount in unit.requests.items():
        if amount <= 0:
            continue
        if resource == "pods" and resource not in machine.capacity:
            continue
        if free.get(resource, 0) < amount:
            return f"insufficient {resource}"

    return None


@dataclass
class FirstFitOracle(PlacementOracle):
    """
    First fit oracle over the machines of one snapshot.

    placed counts units bound by this instance, which tests use to check that
    an oracle never outlives its round.
    """

    placed: int = 0

    def try_place(
        self,
        snapshot: ClusterSnapshot,
        units: Sequence[PlacementUnit],
    ) -> List[PlacementOutcome]:
        outcomes: List[PlacementOutcome] = []
        for unit in units:
            outcome = self._place_one(snapshot, unit)
            outcomes.append(outcome)
        return outcomes

    def _place_one(self, snapshot: ClusterSnapshot, unit: PlacementUnit) -> PlacementOutcome:
        reason = "no machines"
        for machine in snapshot.machines():
            rejected = rejection_reason(unit, machine, snapshot.free(machine.name))
            if rejected is None:
                snapshot.bind(unit, machine.name)
                self.placed += 1
                LOGGER.debug("bound %s to %s", unit.uid, machine.name)
                return PlacementOutcome(uid=unit.uid, machine=machine.name)
            if rejected != NODE_NAME_MISMATCH or reason == "no machines":
                reason = rejected

        LOGGER.debug("could not bind %s: %s", unit.uid, reason)
        return PlacementOutcome(uid=unit.uid, reason=reason)


@dataclass
class FirstFitOracleFactory(OracleFactory):
    """Factory handing out a new FirstFitOracle every round."""

    created: int = 0

    def create(self, snapshot: ClusterSnapshot) -> PlacementOracle:
        _ = snapshot
        self.created += 1
        return FirstFitOracle()
