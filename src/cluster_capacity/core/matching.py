"""
Machine matching rules.

Decides whether a set of placement constraints admits a machine, looking only
at the machine's identity, labels and taints. Resource fit is left to the
oracle.

Shared by the first fit oracle and by the expander, which uses it to decide
which machines a node bound controller runs on.
"""

from __future__ import annotations

from typing import Dict, Optional

from cluster_capacity.core.types import Machine, NodeSelectorRequirement, PlacementConstraints

BLOCKING_EFFECTS = {"NoSchedule", "NoExecute"}

NODE_NAME_MISMATCH = "node name mismatch"


def requirement_matches(req: NodeSelectorRequirement, labels: Dict[str, str]) -> bool:
    if req.operator == "In":
        return labels.get(req.key) in req.values
    if req.operator == "NotIn":
        return labels.get(req.key) not in req.values
    if req.operator == "Exists":
        return req.key in labels
    if req.operator == "DoesNotExist":
        return req.key not in labels
    return False


def constraint_mismatch(constraints: PlacementConstraints, machine: Machine) -> Optional[str]:
    """
    Return why the constraints exclude machine, or None when they admit it.

    Checked in order: node name pin, node selector, required node affinity,
    then NoSchedule and NoExecute taints against the tolerations.
    """
    if constraints.node_name and constraints.node_name != machine.name:
        return NODE_NAME_MISMATCH

    for key, value in constraints.node_selector.items():
        if machine.labels.get(key) != value:
            return "node selector mismatch"

    if constraints.required_affinity:
        if not any(
            all(requirement_matches(req, machine.labels) for req in term)
            for term in constraints.required_affinity
        ):
            return "node affinity mismatch"

    for taint in machine.taints:
        if taint.effect not in BLOCKING_EFFECTS:
            continue
        if not any(t.tolerates(taint) for t in constraints.tolerations):
            return f"untolerated taint {taint.key}"

    return None
