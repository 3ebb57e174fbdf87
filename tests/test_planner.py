from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from cluster_capacity.cluster.snapshot import ClusterSnapshot
from cluster_capacity.core.errors import (
    ConfigurationError,
    InvalidTemplateError,
    MalformedWorkloadError,
    OracleError,
    OracleInitError,
    SyncError,
)
from cluster_capacity.core.types import (
    ClusterDescription,
    Machine,
    MachineTemplate,
    ResourceDescriptor,
    Taint,
    Workload,
)
from cluster_capacity.oracle.base import PlacementOutcome
from cluster_capacity.oracle.first_fit import FirstFitOracle, FirstFitOracleFactory
from cluster_capacity.ordering.policy import ConstraintAwareOrdering, IdentityOrdering
from cluster_capacity.planner.planner import (
    CapacityPlanner,
    PlannerConfig,
    PlannerState,
    RoundStatus,
    SessionStatus,
)

GI = 1024**3


@dataclass
class FixedSource:
    """In memory cluster source that counts how often it was synced."""

    machines: list[Machine]
    controllers: list[ResourceDescriptor] = field(default_factory=list)
    loads: int = 0

    def load(self) -> ClusterDescription:
        self.loads += 1
        return ClusterDescription(
            machines=list(self.machines),
            units=[],
            node_bound_controllers=list(self.controllers),
        )


def machine(name: str, cpu: int = 2000) -> Machine:
    return Machine(name=name, capacity={"cpu": cpu, "memory": 4 * GI})


def template(cpu: int = 2000) -> MachineTemplate:
    return MachineTemplate(name="candidate", capacity={"cpu": cpu, "memory": 4 * GI})


def pod_spec(cpu: str = "1", **extra: Any) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "containers": [{"name": "main", "resources": {"requests": {"cpu": cpu}}}]
    }
    spec.update(extra)
    return spec


def controller(kind: str, name: str, spec: dict[str, Any], replicas: int | None = None) -> ResourceDescriptor:
    body: dict[str, Any] = {
        "kind": kind,
        "metadata": {"name": name, "namespace": "default"},
        "spec": {"template": {"spec": spec}},
    }
    if replicas is not None:
        body["spec"]["replicas"] = replicas
    return ResourceDescriptor(kind=kind, name=name, namespace="default", body=body)


def pod(name: str, spec: dict[str, Any]) -> ResourceDescriptor:
    body = {"kind": "Pod", "metadata": {"name": name}, "spec": spec}
    return ResourceDescriptor(kind="Pod", name=name, namespace="default", body=body)


def workload(name: str, *descriptors: ResourceDescriptor) -> Workload:
    return Workload(name=name, descriptors=tuple(descriptors))


def never_fits(name: str) -> Workload:
    spec = {
        "containers": [
            {"name": "main", "resources": {"requests": {"cpu": "100m", "nvidia.com/gpu": 1}}}
        ]
    }
    return workload(name, pod(f"{name}-gpu", spec))


def test_base_cluster_short_by_one_machine():
    source = FixedSource(machines=[machine("base-1")])
    apps = [workload("A", controller("Deployment", "web", pod_spec("1"), replicas=3))]
    planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())

    result = planner.plan(source, apps, template())

    assert result.status == SessionStatus.succeeded
    assert result.trial_size == 1
    assert [r.trial_size for r in result.rounds] == [0, 1]

    first = result.rounds[0]
    assert first.status == RoundStatus.failed
    assert first.failed_workload == "A"
    assert first.outcomes[0].placed == 2
    assert len(first.outcomes[0].unplaced) == 1
    assert first.snapshot is None

    winner = result.winning_round
    assert winner is not None
    assert winner.machine_count == 2
    assert winner.outcomes[0].machines == {"base-1": 2, "candidate-trial-0": 1}
    assert planner.state == PlannerState.session_succeeded


def test_later_workload_that_never_fits_exhausts_the_session():
    source = FixedSource(machines=[machine("base-1")])
    apps = [workload("A", pod("small", pod_spec("100m"))), never_fits("B")]
    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(max_rounds=5),
    )

    result = planner.plan(source, apps, template())

    assert result.status == SessionStatus.exhausted
    assert result.trial_size is None
    assert not result.succeeded
    assert len(result.rounds) == 5
    for rnd in result.rounds:
        assert rnd.failed_workload == "B"
        assert rnd.outcomes[0].workload == "A"
        assert rnd.outcomes[0].ok
    assert "5 rounds" in result.reason
    assert planner.state == PlannerState.session_exhausted


def test_first_failure_stops_the_round():
    source = FixedSource(machines=[machine("base-1")])
    apps = [never_fits("A"), workload("B", pod("small", pod_spec("100m")))]
    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(max_rounds=2),
    )

    result = planner.plan(source, apps, template())

    for rnd in result.rounds:
        assert [o.workload for o in rnd.outcomes] == ["A"]


def test_empty_workload_list_succeeds_at_zero():
    factory = FirstFitOracleFactory()
    planner = CapacityPlanner(oracle_factory=factory)

    result = planner.plan(FixedSource(machines=[]), [], template())

    assert result.status == SessionStatus.succeeded
    assert result.trial_size == 0
    assert len(result.rounds) == 1


def test_workload_without_units_is_trivially_placed():
    service = ResourceDescriptor(kind="Service", name="svc", namespace="default", body={"kind": "Service"})
    planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())

    result = planner.plan(FixedSource(machines=[]), [workload("A", service)], template())

    assert result.trial_size == 0
    assert result.rounds[0].outcomes[0].units == 0


def test_zero_rounds_never_builds_an_oracle():
    factory = FirstFitOracleFactory()
    source = FixedSource(machines=[machine("base-1")])
    planner = CapacityPlanner(oracle_factory=factory, config=PlannerConfig(max_rounds=0))

    result = planner.plan(source, [workload("A", pod("p", pod_spec()))], template())

    assert result.status == SessionStatus.exhausted
    assert result.rounds == []
    assert factory.created == 0
    assert source.loads == 0


def test_same_inputs_give_same_answer():
    apps = [
        workload("A", controller("Deployment", "web", pod_spec("700m"), replicas=5)),
        workload("B", controller("StatefulSet", "db", pod_spec("1500m"), replicas=2)),
    ]

    answers = []
    for _ in range(2):
        planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())
        result = planner.plan(FixedSource(machines=[machine("base-1")]), apps, template())
        answers.append(result.trial_size)

    assert answers[0] is not None
    assert answers[0] == answers[1]


def test_every_round_uses_a_fresh_snapshot_and_oracle():
    source = FixedSource(machines=[machine("base-1")])
    factory = FirstFitOracleFactory()
    planner = CapacityPlanner(oracle_factory=factory)
    apps = [workload("A", controller("Deployment", "web", pod_spec("1"), replicas=7))]

    result = planner.plan(source, apps, template())

    assert result.trial_size == 3
    generations = [r.generation for r in result.rounds]
    assert len(set(generations)) == len(generations)
    assert source.loads == len(result.rounds)
    assert factory.created == len(result.rounds)
    assert [r.machine_count for r in result.rounds] == [1, 2, 3, 4]


@dataclass
class RecordingFactory:
    """Wrap the first fit oracle and record every batch it receives."""

    batches: list[tuple[int, list[Any]]] = field(default_factory=list)

    def create(self, snapshot: ClusterSnapshot) -> "RecordingOracle":
        return RecordingOracle(self)


@dataclass
class RecordingOracle:
    factory: RecordingFactory
    inner: FirstFitOracle = field(default_factory=FirstFitOracle)

    def try_place(self, snapshot: ClusterSnapshot, units: list[Any]) -> list[PlacementOutcome]:
        self.factory.batches.append((snapshot.generation, list(units)))
        return self.inner.try_place(snapshot, units)


def test_node_bound_units_expand_once_per_round_and_follow_machine_count():
    daemon = controller("DaemonSet", "log-agent", pod_spec("50m"))
    source = FixedSource(machines=[machine("base-1"), machine("base-2")], controllers=[daemon])
    apps = [
        workload("A", pod("small", pod_spec("100m"))),
        workload("B", pod("other", pod_spec("100m"))),
        never_fits("C"),
    ]
    factory = RecordingFactory()
    planner = CapacityPlanner(oracle_factory=factory, config=PlannerConfig(max_rounds=3))

    result = planner.plan(source, apps, template())

    assert result.status == SessionStatus.exhausted
    for rnd in result.rounds:
        assert rnd.outcomes[0].node_bound == 2 + rnd.trial_size
        assert rnd.outcomes[1].node_bound == 0
        assert rnd.outcomes[2].node_bound == 0

        batches = [units for gen, units in factory.batches if gen == rnd.generation]
        node_bound = [u for units in batches for u in units if u.unit_class == "node_bound"]
        assert len(node_bound) == rnd.machine_count
        assert all(u.workload == "A" for u in node_bound)


def test_node_bound_units_go_after_the_first_workload_units():
    daemon = controller("DaemonSet", "log-agent", pod_spec("50m"))
    source = FixedSource(machines=[machine("base-1")], controllers=[daemon])
    factory = RecordingFactory()
    planner = CapacityPlanner(oracle_factory=factory)

    result = planner.plan(source, [workload("A", pod("small", pod_spec("100m")))], template())

    assert result.trial_size == 0
    ((_, units),) = factory.batches
    assert [u.uid for u in units] == [
        "A/Pod/default/small/0",
        "cluster/DaemonSet/default/log-agent/base-1",
    ]


def test_daemon_skips_tainted_control_plane_machine():
    master = Machine(
        name="master",
        capacity={"cpu": 2000, "memory": 4 * GI},
        taints=(Taint(key="node-role.kubernetes.io/control-plane"),),
    )
    daemon = controller("DaemonSet", "log-agent", pod_spec("50m"))
    source = FixedSource(machines=[master, machine("worker")], controllers=[daemon])
    planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())

    result = planner.plan(source, [workload("a", pod("small", pod_spec("500m")))], template())

    assert result.status == SessionStatus.succeeded
    assert result.trial_size == 0
    (outcome,) = result.rounds[0].outcomes
    assert outcome.node_bound == 1
    assert outcome.machines == {"worker": 2}


def test_daemon_node_selector_limits_its_machines():
    gpu = Machine(name="gpu", capacity={"cpu": 2000, "memory": 4 * GI}, labels={"gpu": "true"})
    daemon = controller("DaemonSet", "gpu-driver", pod_spec("50m", nodeSelector={"gpu": "true"}))
    source = FixedSource(machines=[gpu, machine("cpu")], controllers=[daemon])
    apps = [workload("a", controller("Deployment", "web", pod_spec("1500m"), replicas=3))]
    factory = RecordingFactory()
    planner = CapacityPlanner(oracle_factory=factory)

    result = planner.plan(source, apps, template())

    assert result.status == SessionStatus.succeeded
    assert result.trial_size == 1
    for rnd in result.rounds:
        assert rnd.outcomes[0].node_bound == 1
    node_bound = [u.uid for _, units in factory.batches for u in units if u.unit_class == "node_bound"]
    assert node_bound == ["cluster/DaemonSet/default/gpu-driver/gpu"] * 2


def test_ordering_policy_changes_the_minimal_trial_size():
    apps = [
        workload(
            "app",
            controller("Deployment", "free", pod_spec("1"), replicas=1),
            pod("pinned", pod_spec("1", nodeName="base-1")),
        )
    ]

    def run(ordering):
        planner = CapacityPlanner(
            oracle_factory=FirstFitOracleFactory(),
            ordering=ordering,
            config=PlannerConfig(max_rounds=4),
        )
        return planner.plan(FixedSource(machines=[machine("base-1", cpu=1000)]), apps, template(cpu=1000))

    identity = run(IdentityOrdering())
    aware = run(ConstraintAwareOrdering())

    assert identity.status == SessionStatus.exhausted
    assert aware.status == SessionStatus.succeeded
    assert aware.trial_size == 1


def test_interactive_decline_aborts_the_session():
    prompts: list[str] = []

    def decline(prompt: str) -> bool:
        prompts.append(prompt)
        return False

    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(interactive=True),
        confirm=decline,
    )
    apps = [workload("A", pod("a", pod_spec("100m"))), workload("B", pod("b", pod_spec("100m")))]

    result = planner.plan(FixedSource(machines=[machine("base-1")]), apps, template())

    assert result.status == SessionStatus.aborted
    assert result.rounds[0].status == RoundStatus.declined
    assert len(prompts) == 1
    assert prompts[0].startswith("A placed")


def test_interactive_accept_runs_to_success():
    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(interactive=True),
        confirm=lambda prompt: True,
    )
    apps = [workload("A", pod("a", pod_spec("100m"))), workload("B", pod("b", pod_spec("100m")))]

    result = planner.plan(FixedSource(machines=[machine("base-1")]), apps, template())

    assert result.trial_size == 0


def test_interactive_without_confirm_is_a_configuration_error():
    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(interactive=True),
    )
    with pytest.raises(ConfigurationError):
        planner.plan(FixedSource(machines=[]), [], template())


def test_caller_can_stop_between_rounds():
    checks: list[int] = []

    def stop_after_first_round() -> bool:
        checks.append(1)
        return len(checks) > 1

    planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())
    result = planner.plan(
        FixedSource(machines=[machine("base-1")]),
        [never_fits("A")],
        template(),
        should_stop=stop_after_first_round,
    )

    assert result.status == SessionStatus.aborted
    assert len(result.rounds) == 1
    assert planner.state == PlannerState.session_aborted


def test_timeout_is_checked_between_rounds():
    ticks = iter(range(0, 1000, 10))
    planner = CapacityPlanner(
        oracle_factory=FirstFitOracleFactory(),
        config=PlannerConfig(timeout_seconds=15),
        clock=lambda: float(next(ticks)),
    )

    result = planner.plan(FixedSource(machines=[machine("base-1")]), [never_fits("A")], template())

    assert result.status == SessionStatus.aborted
    assert result.reason == "timeout"
    assert len(result.rounds) == 1


def test_malformed_workload_is_reported_before_any_round():
    factory = FirstFitOracleFactory()
    broken = ResourceDescriptor(
        kind="Deployment",
        name="broken",
        namespace="default",
        body={"kind": "Deployment", "spec": {"replicas": 2}},
    )
    planner = CapacityPlanner(oracle_factory=factory)

    with pytest.raises(MalformedWorkloadError):
        planner.plan(FixedSource(machines=[]), [workload("A", broken)], template())
    assert factory.created == 0


def test_invalid_template_is_rejected_before_any_round():
    factory = FirstFitOracleFactory()
    planner = CapacityPlanner(oracle_factory=factory)

    with pytest.raises(InvalidTemplateError):
        planner.plan(FixedSource(machines=[]), [], template(cpu=0))
    assert factory.created == 0


class BrokenFactory:
    def create(self, snapshot: ClusterSnapshot) -> Any:
        raise RuntimeError("scheduler config missing")


class ShortOracle:
    def try_place(self, snapshot: ClusterSnapshot, units: list[Any]) -> list[PlacementOutcome]:
        return []


class ShortFactory:
    def create(self, snapshot: ClusterSnapshot) -> ShortOracle:
        return ShortOracle()


def test_oracle_init_failure_is_fatal():
    planner = CapacityPlanner(oracle_factory=BrokenFactory())
    with pytest.raises(OracleInitError):
        planner.plan(FixedSource(machines=[]), [], template())


def test_oracle_breaking_the_outcome_contract_is_fatal():
    planner = CapacityPlanner(oracle_factory=ShortFactory())
    with pytest.raises(OracleError):
        planner.plan(
            FixedSource(machines=[machine("base-1")]),
            [workload("A", pod("a", pod_spec()))],
            template(),
        )


class FailingSource:
    def load(self) -> ClusterDescription:
        raise OSError("connection refused")


def test_unreadable_base_cluster_is_a_sync_error():
    planner = CapacityPlanner(oracle_factory=FirstFitOracleFactory())
    with pytest.raises(SyncError):
        planner.plan(FailingSource(), [], template())
