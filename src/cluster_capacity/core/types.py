"""
Core types.

This file defines the shared data structures used across the engine.

Important design choice
We keep these types independent of any client library.

Sources and loaders convert Kubernetes shaped documents into these records, so
the planner, the ordering policies and the oracles never read raw manifests
except through ResourceDescriptor.body.

Resource vectors map a resource name to an integer amount.
cpu is stored in millicores, every other resource in its base unit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Dict, List, Optional, Tuple

ResourceVector = Dict[str, int]

HOSTNAME_LABEL = "kubernetes.io/hostname"


class MachineOrigin(StrEnum):
    """
    Where a machine came from.

    base
      Synced from the base cluster description.

    trial
      Added by the planner from the candidate machine template.
    """

    base = "base"
    trial = "trial"


class UnitClass(StrEnum):
    """
    Placement unit classification.

    ordinary
      Produced by pods and replicated controllers.

    node_bound
      Produced once per machine by daemon style controllers.
    """

    ordinary = "ordinary"
    node_bound = "node_bound"


class WorkloadOrigin(StrEnum):
    """Raw manifests or a templated package rendered to manifests."""

    raw = "raw"
    templated = "templated"


@dataclass(frozen=True)
class Taint:
    """A machine taint. Only NoSchedule and NoExecute block placement."""

    key: str
    value: str = ""
    effect: str = "NoSchedule"


@dataclass(frozen=True)
class Toleration:
    """
    A unit toleration.

    operator is Equal or Exists.
    An empty key with Exists tolerates every taint.
    An empty effect matches every effect.
    """

    key: str = ""
    operator: str = "Equal"
    value: str = ""
    effect: str = ""

    def tolerates(self, taint: Taint) -> bool:
        if self.effect and self.effect != taint.effect:
            return False
        if self.operator == "Exists":
            return not self.key or self.key == taint.key
        return self.key == taint.key and self.value == taint.value


@dataclass(frozen=True)
class NodeSelectorRequirement:
    """
    One match expression of a required node affinity term.

    operator is In, NotIn, Exists or DoesNotExist.
    """

    key: str
    operator: str
    values: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PlacementConstraints:
    """
    Placement constraints carried by a unit.

    The search engine never interprets these. They are passed through to the
    oracle and read by the constraint aware ordering policy.

    node_name
      Pins the unit to one machine.

    node_selector
      Labels the machine must carry.

    required_affinity
      Node affinity terms. Terms are OR'ed, requirements inside a term are AND'ed.

    tolerations
      Taints the unit accepts.
    """

    node_name: Optional[str] = None
    node_selector: Dict[str, str] = field(default_factory=dict)
    required_affinity: Tuple[Tuple[NodeSelectorRequirement, ...], ...] = ()
    tolerations: Tuple[Toleration, ...] = ()


@dataclass(frozen=True)
class Machine:
    """
    A schedulable host.

    name is the identity and must be unique within a snapshot.
    round_introduced is the trial size k for trial machines and None for base machines.
    """

    name: str
    capacity: ResourceVector
    labels: Dict[str, str] = field(default_factory=dict)
    taints: Tuple[Taint, ...] = ()
    origin: MachineOrigin = MachineOrigin.base
    round_introduced: Optional[int] = None


@dataclass(frozen=True)
class MachineTemplate:
    """
    Candidate machine description.

    instantiate stamps out trial machines. The hostname label follows the
    generated name so that hostname selectors keep working.
    """

    name: str
    capacity: ResourceVector
    labels: Dict[str, str] = field(default_factory=dict)
    taints: Tuple[Taint, ...] = ()

    def trial_name(self, index: int) -> str:
        return f"{self.name}-trial-{index}"

    def instantiate(self, trial_size: int, index: int) -> Machine:
        name = self.trial_name(index)
        labels = dict(self.labels)
        labels[HOSTNAME_LABEL] = name
        return Machine(
            name=name,
            capacity=dict(self.capacity),
            labels=labels,
            taints=self.taints,
            origin=MachineOrigin.trial,
            round_introduced=trial_size,
        )


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    One manifest document.

    body is the parsed document. It stays an untyped dict because controllers
    describe pods differently. The expander is responsible for interpreting it.
    """

    kind: str
    name: str
    namespace: str
    body: Dict[str, Any]

    @property
    def ref(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class Workload:
    """
    A named, ordered group of resource descriptors.

    Workloads are read only for a whole session and shared across rounds.
    """

    name: str
    descriptors: Tuple[ResourceDescriptor, ...]
    origin: WorkloadOrigin = WorkloadOrigin.raw


@dataclass
class PlacementUnit:
    """
    The smallest schedulable item, one pod equivalent.

    assignment is None until an oracle binds the unit to a machine.
    Units are created per round and discarded with the round snapshot.
    """

    uid: str
    workload: str
    source: str
    requests: ResourceVector
    constraints: PlacementConstraints = field(default_factory=PlacementConstraints)
    unit_class: UnitClass = UnitClass.ordinary
    assignment: Optional[str] = None

    @property
    def bound(self) -> bool:
        return self.assignment is not None


@dataclass(frozen=True)
class ClusterDescription:
    """
    Normalized base cluster as returned by a cluster source.

    units are pre existing pods already bound to a machine.
    node_bound_controllers are cluster level daemon style descriptors.
    """

    machines: List[Machine]
    units: List[PlacementUnit]
    node_bound_controllers: List[ResourceDescriptor]
