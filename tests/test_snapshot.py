from __future__ import annotations

from dataclasses import dataclass

import pytest

from cluster_capacity.cluster.snapshot import ClusterSnapshot
from cluster_capacity.core.errors import InvalidTemplateError, SyncError
from cluster_capacity.core.types import (
    ClusterDescription,
    Machine,
    MachineOrigin,
    MachineTemplate,
    PlacementUnit,
)

GI = 1024**3


@dataclass
class FixedSource:
    description: ClusterDescription

    def load(self) -> ClusterDescription:
        return self.description


def base_description() -> ClusterDescription:
    existing = PlacementUnit(
        uid="base/kube-system/dns",
        workload="base",
        source="Pod/kube-system/dns",
        requests={"cpu": 500, "pods": 1},
        assignment="node-1",
    )
    return ClusterDescription(
        machines=[Machine(name="node-1", capacity={"cpu": 2000, "memory": 4 * GI, "pods": 10})],
        units=[existing],
        node_bound_controllers=[],
    )


def candidate(cpu: int = 4000, memory: int = 8 * GI) -> MachineTemplate:
    return MachineTemplate(name="big", capacity={"cpu": cpu, "memory": memory}, labels={"tier": "new"})


def test_sync_copies_machines_and_existing_units():
    snapshot = ClusterSnapshot.sync_from_base(FixedSource(base_description()))

    assert snapshot.machine_names() == ["node-1"]
    assert snapshot.allocated("node-1") == {"cpu": 500, "pods": 1}
    assert snapshot.free("node-1") == {"cpu": 1500, "memory": 4 * GI, "pods": 9}
    assert [u.uid for u in snapshot.units_on("node-1")] == ["base/kube-system/dns"]


def test_each_sync_yields_a_new_generation():
    source = FixedSource(base_description())

    first = ClusterSnapshot.sync_from_base(source)
    second = ClusterSnapshot.sync_from_base(source)

    assert first.generation != second.generation
    assert first.units()[0] is not second.units()[0]


def test_add_trial_machines_appends_exactly_count():
    snapshot = ClusterSnapshot.sync_from_base(FixedSource(base_description()))

    added = snapshot.add_trial_machines(candidate(), 3)

    assert len(snapshot) == 4
    assert [m.name for m in added] == ["big-trial-0", "big-trial-1", "big-trial-2"]
    assert all(m.origin == MachineOrigin.trial for m in added)
    assert all(m.round_introduced == 3 for m in added)
    assert added[0].labels == {"tier": "new", "kubernetes.io/hostname": "big-trial-0"}


def test_zero_trial_machines_is_the_base_cluster():
    snapshot = ClusterSnapshot.sync_from_base(FixedSource(base_description()))

    assert snapshot.add_trial_machines(candidate(), 0) == []
    assert len(snapshot) == 1


@pytest.mark.parametrize(
    "template",
    [
        MachineTemplate(name="empty", capacity={}),
        MachineTemplate(name="nocpu", capacity={"cpu": 0, "memory": GI}),
        MachineTemplate(name="nomem", capacity={"cpu": 1000}),
    ],
)
def test_invalid_templates_are_rejected(template):
    snapshot = ClusterSnapshot()

    with pytest.raises(InvalidTemplateError):
        snapshot.add_trial_machines(template, 1)


def test_trial_name_collision_is_rejected():
    description = ClusterDescription(
        machines=[Machine(name="big-trial-0", capacity={"cpu": 1000, "memory": GI})],
        units=[],
        node_bound_controllers=[],
    )
    snapshot = ClusterSnapshot.sync_from_base(FixedSource(description))

    with pytest.raises(InvalidTemplateError):
        snapshot.add_trial_machines(candidate(), 1)


def test_duplicate_base_machine_is_a_sync_error():
    node = Machine(name="node-1", capacity={"cpu": 1000, "memory": GI})
    description = ClusterDescription(machines=[node, node], units=[], node_bound_controllers=[])

    with pytest.raises(SyncError):
        ClusterSnapshot.sync_from_base(FixedSource(description))


def test_unit_on_unknown_machine_is_a_sync_error():
    stray = PlacementUnit(uid="u", workload="base", source="Pod/x/u", requests={}, assignment="ghost")
    description = ClusterDescription(machines=[], units=[stray], node_bound_controllers=[])

    with pytest.raises(SyncError):
        ClusterSnapshot.sync_from_base(FixedSource(description))


def test_bind_commits_unit_and_consumes_capacity():
    snapshot = ClusterSnapshot.sync_from_base(FixedSource(base_description()))
    unit = PlacementUnit(uid="web/0", workload="web", source="Pod/a/web", requests={"cpu": 1000, "pods": 1})

    snapshot.bind(unit, "node-1")

    assert unit.assignment == "node-1"
    assert snapshot.free("node-1")["cpu"] == 500
    with pytest.raises(ValueError):
        snapshot.bind(unit, "node-1")
