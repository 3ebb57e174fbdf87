"""
Cluster snapshot.

We keep a simple in memory store as the simulated cluster for one round.
A cluster source provides the base description, the planner appends trial
machines, and the oracle commits units to machines.

Why rebuild every round
Placement is not reversible. Once an oracle binds a unit, unbinding it does
not reliably restore the oracle's own scheduling state, so every round starts
from a snapshot synced from the unmodified base. The generation marker lets
callers prove that a snapshot was never reused.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import replace
from typing import Dict, Iterator, List, Optional

from cluster_capacity.cluster.sources.base import ClusterSource
from cluster_capacity.core.errors import InvalidTemplateError, SyncError
from cluster_capacity.core.quantity import add_vectors
from cluster_capacity.core.types import (
    Machine,
    MachineTemplate,
    PlacementUnit,
    ResourceDescriptor,
    ResourceVector,
)

LOGGER = logging.getLogger(__name__)

_GENERATIONS = itertools.count(1)


class ClusterSnapshot:
    """
    Machines keyed by name plus the units committed to them.

    Machine names are unique. Insertion order is kept, base machines first,
    which is also the order oracles see them in.
    """

    def __init__(self) -> None:
        self.generation = next(_GENERATIONS)
        self._machines: Dict[str, Machine] = {}
        self._units: Dict[str, PlacementUnit] = {}
        self._allocated: Dict[str, ResourceVector] = {}
        self.node_bound_controllers: List[ResourceDescriptor] = []

    @classmethod
    def sync_from_base(cls, source: ClusterSource) -> "ClusterSnapshot":
        """
        Build a fresh snapshot from a base cluster source.

        Source failures are reported as SyncError. Units are copied so that a
        description shared across rounds is never mutated.
        """
        try:
            description = source.load()
        except SyncError:
            raise
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise SyncError(f"failed to load base cluster: {exc}") from exc

        snapshot = cls()
        for machine in description.machines:
            if machine.name in snapshot._machines:
                raise SyncError(f"duplicate machine {machine.name} in base cluster")
            snapshot._add_machine(machine)

        for unit in description.units:
            if unit.assignment is None or unit.assignment not in snapshot._machines:
                raise SyncError(f"unit {unit.uid} is bound to unknown machine {unit.assignment}")
            snapshot._commit(replace(unit))

        snapshot.node_bound_controllers = list(description.node_bound_controllers)

        LOGGER.debug(
            "snapshot %d synced: %d machines, %d units, %d node bound controllers",
            snapshot.generation,
            len(snapshot._machines),
            len(snapshot._units),
            len(snapshot.node_bound_controllers),
        )
        return snapshot

    def add_trial_machines(self, template: MachineTemplate, count: int) -> List[Machine]:
        """
        Append count machines stamped from template.

        The trial size recorded on each machine is count itself, since a round
        with trial size k adds exactly k machines to a fresh snapshot.
        """
        validate_template(template)
        if count < 0:
            raise ValueError("count must not be negative")

        added: List[Machine] = []
        for index in range(count):
            machine = template.instantiate(count, index)
            if machine.name in self._machines:
                raise InvalidTemplateError(
                    f"trial machine name {machine.name} collides with an existing machine"
                )
            self._add_machine(machine)
            added.append(machine)
        return added

    def bind(self, unit: PlacementUnit, machine_name: str) -> None:
        """Commit a unit to a machine. Used by oracles."""
        if machine_name not in self._machines:
            raise KeyError(f"unknown machine {machine_name}")
        if unit.uid in self._units:
            raise ValueError(f"unit {unit.uid} is already committed")
        unit.assignment = machine_name
        self._commit(unit)

    def machines(self) -> List[Machine]:
        return list(self._machines.values())

    def machine(self, name: str) -> Optional[Machine]:
        return self._machines.get(name)

    def machine_names(self) -> List[str]:
        return list(self._machines.keys())

    def units(self) -> List[PlacementUnit]:
        return list(self._units.values())

    def units_on(self, machine_name: str) -> List[PlacementUnit]:
        return [u for u in self._units.values() if u.assignment == machine_name]

    def allocated(self, machine_name: str) -> ResourceVector:
        return dict(self._allocated.get(machine_name, {}))

    def free(self, machine_name: str) -> ResourceVector:
        """Capacity minus allocation for every resource the machine declares."""
        machine = self._machines[machine_name]
        used = self._allocated.get(machine_name, {})
        return {name: amount - used.get(name, 0) for name, amount in machine.capacity.items()}

    def __len__(self) -> int:
        return len(self._machines)

    def __iter__(self) -> Iterator[Machine]:
        return iter(self._machines.values())

    def _add_machine(self, machine: Machine) -> None:
        self._machines[machine.name] = machine
        self._allocated[machine.name] = {}

    def _commit(self, unit: PlacementUnit) -> None:
        machine_name = str(unit.assignment)
        self._units[unit.uid] = unit
        self._allocated[machine_name] = add_vectors(self._allocated[machine_name], unit.requests)


def validate_template(template: MachineTemplate) -> None:
    """
    Reject templates that cannot produce a usable machine.

    A template must declare capacity, and cpu and memory must both be positive.
    """
    if not template.name:
        raise InvalidTemplateError("machine template has no name")
    if not template.capacity:
        raise InvalidTemplateError(f"machine template {template.name} declares no capacity")
    for resource in ("cpu", "memory"):
        if template.capacity.get(resource, 0) <= 0:
            raise InvalidTemplateError(
                f"machine template {template.name} has zero {resource} capacity"
            )
