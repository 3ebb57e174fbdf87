"""
Workload expander.

Purpose
Turn a workload's descriptors into concrete placement units.

Fan out rules
Pod                                   one unit
Deployment, ReplicaSet,
ReplicationController, StatefulSet    spec.replicas units, default 1
Job                                   min(parallelism, completions), each default 1
DaemonSet                             one node bound unit per eligible machine, pinned to it
anything else                         no units

Expansion is deterministic and has no side effects. Unit uids are derived
from the workload name, the descriptor and an index, so two expansions of the
same input produce identical units.

A machine is eligible for a node bound controller when its pod template
admits the machine: node selector, required node affinity and tolerations of
NoSchedule and NoExecute taints. Resource fit is not part of eligibility.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Sequence

from cluster_capacity.core.errors import MalformedWorkloadError
from cluster_capacity.core.matching import constraint_mismatch
from cluster_capacity.core.types import (
    Machine,
    PlacementUnit,
    ResourceDescriptor,
    UnitClass,
    Workload,
)
from cluster_capacity.workload.podspec import pod_constraints, pod_requests, pod_template_spec

LOGGER = logging.getLogger(__name__)

REPLICATED_KINDS = {"Deployment", "ReplicaSet", "ReplicationController", "StatefulSet"}
NODE_BOUND_KINDS = {"DaemonSet"}


def _count(spec: Dict[str, Any], key: str) -> int:
    value = spec.get(key, 1)
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"spec.{key} must be a non negative integer")
    return value


def replica_count(descriptor: ResourceDescriptor) -> int:
    """Number of ordinary units an ordinary descriptor yields."""
    spec = descriptor.body.get("spec") or {}
    if descriptor.kind == "Pod":
        return 1
    if descriptor.kind in REPLICATED_KINDS:
        return _count(spec, "replicas")
    if descriptor.kind == "Job":
        return min(_count(spec, "parallelism"), _count(spec, "completions"))
    return 0


def produces_units(descriptor: ResourceDescriptor) -> bool:
    return (
        descriptor.kind == "Pod"
        or descriptor.kind == "Job"
        or descriptor.kind in REPLICATED_KINDS
        or descriptor.kind in NODE_BOUND_KINDS
    )


class WorkloadExpander:
    """
    Expand workloads into placement units.

    The expander never touches a snapshot. Node bound descriptors read only
    the machine list they are handed, so the unit count follows whatever
    trial size is active.
    """

    def expand(self, workload: Workload, machines: Sequence[Machine]) -> List[PlacementUnit]:
        units: List[PlacementUnit] = []
        for descriptor in workload.descriptors:
            units.extend(self._expand_descriptor(workload.name, descriptor, machines))
        LOGGER.debug("workload %s expanded to %d units", workload.name, len(units))
        return units

    def expand_node_bound(
        self,
        owner: str,
        controllers: Iterable[ResourceDescriptor],
        machines: Sequence[Machine],
    ) -> List[PlacementUnit]:
        """
        Expand cluster level node bound controllers, one unit per eligible machine each.

        owner is the workload the units are attributed to, the first
        workload of the round.
        """
        units: List[PlacementUnit] = []
        for descriptor in controllers:
            units.extend(self._node_bound_units(owner, descriptor, machines, prefix="cluster"))
        return units

    def validate(self, workload: Workload) -> None:
        """
        Surface malformed descriptors before any round runs.

        Expanding against no machines still parses every pod template.
        """
        self.expand(workload, [])

    def _expand_descriptor(
        self,
        owner: str,
        descriptor: ResourceDescriptor,
        machines: Sequence[Machine],
    ) -> List[PlacementUnit]:
        if not produces_units(descriptor):
            return []
        if descriptor.kind in NODE_BOUND_KINDS:
            return self._node_bound_units(owner, descriptor, machines, prefix=owner)

        try:
            count = replica_count(descriptor)
            spec = pod_template_spec(descriptor.kind, descriptor.body)
            requests = pod_requests(spec)
            constraints = pod_constraints(spec)
        except (ValueError, TypeError, AttributeError) as exc:
            raise MalformedWorkloadError(f"{owner}: {descriptor.ref}: {exc}") from exc

        return [
            PlacementUnit(
                uid=f"{owner}/{descriptor.ref}/{index}",
                workload=owner,
                source=descriptor.ref,
                requests=dict(requests),
                constraints=constraints,
                unit_class=UnitClass.ordinary,
            )
            for index in range(count)
        ]

    def _node_bound_units(
        self,
        owner: str,
        descriptor: ResourceDescriptor,
        machines: Sequence[Machine],
        prefix: str,
    ) -> List[PlacementUnit]:
        try:
            spec = pod_template_spec(descriptor.kind, descriptor.body)
            requests = pod_requests(spec)
            constraints = pod_constraints(spec)
        except (ValueError, TypeError, AttributeError) as exc:
            raise MalformedWorkloadError(f"{owner}: {descriptor.ref}: {exc}") from exc

        return [
            PlacementUnit(
                uid=f"{prefix}/{descriptor.ref}/{machine.name}",
                workload=owner,
                source=descriptor.ref,
                requests=dict(requests),
                constraints=replace(constraints, node_name=machine.name),
                unit_class=UnitClass.node_bound,
            )
            for machine in machines
            if constraint_mismatch(constraints, machine) is None
        ]
