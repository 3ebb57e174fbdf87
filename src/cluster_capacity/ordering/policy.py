"""
Submission ordering policies.

Purpose
Decide the order in which a batch of units is handed to the oracle.

Oracles place units one at a time in submission order, so the order is load
bearing: an easily movable unit placed first can take the only machine a
constrained unit was able to use.

Important
Policies are pure. They return a new list, never mutate the units and break
ties by input order, so the same batch always yields the same order.
"""

from __future__ import annotations

from typing import List, Protocol, Sequence

from cluster_capacity.core.types import PlacementUnit


class OrderingPolicy(Protocol):
    """Ordering policy interface."""

    def order(self, units: Sequence[PlacementUnit]) -> List[PlacementUnit]:
        """Return the units in submission order."""


class IdentityOrdering(OrderingPolicy):
    """Submit in expansion order."""

    def order(self, units: Sequence[PlacementUnit]) -> List[PlacementUnit]:
        return list(units)


def constraint_tightness(unit: PlacementUnit) -> int:
    """
    Rank how few machines a unit can use.

    4  pinned to a named machine
    3  required node affinity
    2  node selector
    1  tolerations only, the unit targets tainted machines
    0  unconstrained
    """
    constraints = unit.constraints
    if constraints.node_name:
        return 4
    if constraints.required_affinity:
        return 3
    if constraints.node_selector:
        return 2
    if constraints.tolerations:
        return 1
    return 0


def dominant_share(unit: PlacementUnit, peaks: dict[str, int]) -> float:
    """Largest request of the unit relative to the largest request in the batch."""
    share = 0.0
    for resource, amount in unit.requests.items():
        peak = peaks.get(resource, 0)
        if peak > 0:
            share = max(share, amount / peak)
    return share


class ConstraintAwareOrdering(OrderingPolicy):
    """
    Submit constrained and heavy units first.

    Sort key, descending
    1) constraint tightness
    2) dominant resource share within the batch

    The pod slot is ignored for the share since every unit asks for one.
    """

    def order(self, units: Sequence[PlacementUnit]) -> List[PlacementUnit]:
        peaks: dict[str, int] = {}
        for unit in units:
            for resource, amount in unit.requests.items():
                if resource == "pods":
                    continue
                peaks[resource] = max(peaks.get(resource, 0), amount)

        # sorted is stable, so equal keys keep expansion order.
        return sorted(
            units,
            key=lambda u: (-constraint_tightness(u), -dominant_share(u, peaks)),
        )


def ordering_for(use_ordering_policy: bool) -> OrderingPolicy:
    if use_ordering_policy:
        return ConstraintAwareOrdering()
    return IdentityOrdering()
