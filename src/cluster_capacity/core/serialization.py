from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any


def _normalize(obj: Any) -> Any:
    if hasattr(obj, "value") and not isinstance(obj, (dict, list, tuple)):
        return obj.value
    if isinstance(obj, dict):
        return {str(k): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def to_json_safe_dict(obj: Any) -> dict[str, Any]:
    """
    Convert a dataclass object into a JSON safe dict.

    Enums collapse to their values and tuples become lists.
    """
    if not is_dataclass(obj) or isinstance(obj, type):
        raise TypeError("expected a dataclass instance")
    normalized = _normalize(asdict(obj))
    if not isinstance(normalized, dict):
        raise TypeError("expected dict after normalization")
    return normalized


def snapshot_to_json(snapshot: Any) -> dict[str, Any]:
    """
    Snapshot transport shape.

    We only rely on snapshot.machines, snapshot.units_on and snapshot.allocated.
    Each machine entry carries its allocation and per resource utilization.
    """
    machines = []
    for machine in snapshot.machines():
        allocated = snapshot.allocated(machine.name)
        utilization = {}
        for resource, capacity in sorted(machine.capacity.items()):
            if capacity > 0:
                utilization[resource] = round(allocated.get(resource, 0) / capacity, 4)
        entry = to_json_safe_dict(machine)
        entry["allocated"] = dict(sorted(allocated.items()))
        entry["utilization"] = utilization
        entry["units"] = sorted(u.uid for u in snapshot.units_on(machine.name))
        machines.append(entry)
    return {"generation": snapshot.generation, "machines": machines}
